"""Page-by-page PDF text extraction with an OCR fallback."""

import io
from pathlib import Path
from typing import Iterator, NamedTuple, Union

import fitz  # PyMuPDF

PAGE_SEPARATOR = "\n\n"


class PageText(NamedTuple):
    """Text extracted from one page, with its 1-based position."""

    number: int
    total: int
    text: str


class PDFParser:
    """A robust PDF parser for extracting text from PDFs using PyMuPDF and RapidOCR.

    Handles both text-layer extraction and OCR fallback for scanned documents or
    PDFs with non-standard font encodings. Pages are decoded one at a time so
    callers can report progress between pages.
    """

    def __init__(self):
        # RapidOCR loads its ONNX models on construction; only pay for it when a
        # page actually needs OCR.
        self._ocr_engine = None

    @property
    def ocr_engine(self):
        if self._ocr_engine is None:
            from rapidocr_onnxruntime import RapidOCR

            # RapidOCR defaults to Chinese (Simplified + Traditional) + English
            self._ocr_engine = RapidOCR()
        return self._ocr_engine

    def iter_pages(self, source: Union[bytes, str, Path]) -> Iterator[PageText]:
        """Yield the text of each page in document order.

        Args:
            source: Raw PDF bytes or a path to a PDF file

        Yields:
            PageText for every page, including pages with no extractable text
        """
        if isinstance(source, (bytes, bytearray)):
            doc = fitz.open(stream=bytes(source), filetype="pdf")
        else:
            pdf_path = Path(source)
            if not pdf_path.exists():
                raise FileNotFoundError(f"PDF file not found: {pdf_path}")
            doc = fitz.open(str(pdf_path))

        try:
            total = len(doc)
            for page_num in range(total):
                page = doc[page_num]
                text = page.get_text().strip()

                # Check if the extracted text is "meaningful"
                if not self._is_text_valid(text):
                    # Fallback to RapidOCR for this page
                    text = self._ocr_page(page)

                yield PageText(number=page_num + 1, total=total, text=text)
        finally:
            doc.close()

    def _ocr_page(self, page) -> str:
        import numpy as np
        from PIL import Image

        # Higher resolution for better OCR
        pix = page.get_pixmap(matrix=fitz.Matrix(2, 2))
        img = Image.open(io.BytesIO(pix.tobytes()))

        # RapidOCR expects an image as numpy array or path
        ocr_result, _ = self.ocr_engine(np.array(img))
        if not ocr_result:
            return ""
        # ocr_result is a list of [box, text, score]
        return "\n".join(line[1] for line in ocr_result)

    def _is_text_valid(self, text: str) -> bool:
        """
        Check if the extracted text looks like actual content or meaningless symbols.

        Validates text by checking for:
        - Non-empty content
        - Presence of meaningful characters (letters, CJK characters, numbers)
        - Low ratio of control/special characters

        Args:
            text: The extracted text to validate

        Returns:
            True if text appears valid, False if it should trigger OCR fallback
        """
        if not text or len(text.strip()) == 0:
            return False

        meaningful_chars = 0
        total_chars = len(text)

        for char in text:
            # Letters (any language), CJK characters, or numbers
            if char.isalnum() or ("\u4e00" <= char <= "\u9fff"):  # CJK range
                meaningful_chars += 1

        # If less than 30% of characters are meaningful, likely garbled
        if total_chars > 0 and meaningful_chars / total_chars < 0.3:
            return False

        return meaningful_chars > 0
