"""Tests for upload text extraction."""

from unittest.mock import patch

from trip_planner.text_extract import extract_text


class TestExtractText:
    def test_plain_text(self):
        assert extract_text("Café at 9".encode(), "notes.txt", "text/plain") == "Café at 9"

    def test_invalid_utf8_replaced(self):
        assert extract_text(b"ok \xff", "notes.md", "text/markdown") == "ok �"

    def test_broken_pdf_gives_empty_string(self):
        assert extract_text(b"not a pdf", "ticket.pdf", "application/pdf") == ""

    @patch("trip_planner.text_extract.extract_pdf_text", return_value="Page one\n\nPage two")
    def test_pdf_by_extension(self, mock_pdf):
        assert extract_text(b"%PDF-1.4", "ticket.PDF") == "Page one\n\nPage two"
        mock_pdf.assert_called_once()
