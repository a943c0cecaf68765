import asyncio
import io
from typing import Optional

import fitz  # PyMuPDF
from docx import Document as DocxDocument

from app.core.errors import EmptyContent, UnsupportedFormat
from app.db.models.document import Document, DocumentType
from app.services.storage_service import StorageService
from app.utils.logger import get_logger

logger = get_logger("services.text_extractor")

FILE_EXTENSIONS = {
    ".pdf": DocumentType.pdf,
    ".docx": DocumentType.docx,
    ".txt": DocumentType.txt,
}


def detect_document_type(filename: Optional[str]) -> DocumentType:
    """Map an uploaded filename to its document type."""
    name = (filename or "").lower()
    if name.endswith(".doc"):
        # python-docx only reads the OOXML format
        raise UnsupportedFormat("Legacy .doc files are not supported; save the file as .docx")
    for extension, document_type in FILE_EXTENSIONS.items():
        if name.endswith(extension):
            return document_type
    raise UnsupportedFormat(f"Unsupported file type: {filename!r}")


def extract_pdf_text(data: bytes) -> str:
    """Concatenate per-page text in page order."""
    with fitz.open(stream=data, filetype="pdf") as pdf:
        pages = [page.get_text() for page in pdf]
    return "\n".join(pages)


def extract_docx_text(data: bytes) -> str:
    """Body paragraphs first, then table cells, in document order."""
    doc = DocxDocument(io.BytesIO(data))
    parts = [para.text for para in doc.paragraphs if para.text.strip()]
    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                parts.append(" ".join(cells))
    return "\n".join(parts)


def extract_plain_text(data: bytes) -> str:
    return data.decode("utf-8-sig")


class TextExtractor:

    def __init__(self, storage: StorageService):
        self.storage = storage

    async def extract(self, document: Document) -> str:
        """Produce plain text for a document, dispatched on its type."""
        document_type = _coerce_type(document.document_type)

        if document_type == DocumentType.text:
            text = document.raw_content or ""
        else:
            if not self.storage.exists(document.file_path):
                raise UnsupportedFormat(f"No stored file for {document_type.value} document {document.id}")
            data = await self.storage.read_bytes(document.file_path)
            text = await self._parse(document_type, data)

        if not text or not text.strip():
            raise EmptyContent(f"No text could be extracted from document {document.id}")

        logger.info(f"Extracted {len(text)} characters from {document_type.value} document {document.id}")
        return text

    async def _parse(self, document_type: DocumentType, data: bytes) -> str:
        parser = {
            DocumentType.pdf: extract_pdf_text,
            DocumentType.docx: extract_docx_text,
            DocumentType.txt: extract_plain_text,
        }[document_type]

        try:
            # Parsers are blocking; keep them off the event loop
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, parser, data)
        except UnicodeDecodeError as e:
            raise UnsupportedFormat(f"File is not valid UTF-8 text: {e}") from e
        except Exception as e:
            raise UnsupportedFormat(f"Could not parse {document_type.value} file: {e}") from e


def _coerce_type(value) -> DocumentType:
    try:
        return DocumentType(value)
    except ValueError as e:
        raise UnsupportedFormat(f"Unsupported document type: {value!r}") from e
