from pathlib import Path

from pypdf import PdfReader


class PDFLoader:

    def supports(self, file_path: Path) -> bool:
        return file_path.suffix.lower() == ".pdf"

    def load(self, file_path: Path) -> str:
        reader = PdfReader(file_path)
        pages = (page.extract_text() for page in reader.pages)
        return "\n\n".join(text.strip() for text in pages if text and text.strip())
