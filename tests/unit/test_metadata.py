from genstore.storage.metadata import FileMetadata, extract_metadata, image_dimensions


class TestImageDimensions:
    def test_reads_png_dimensions(self, png_bytes: bytes) -> None:
        assert image_dimensions(png_bytes) == (64, 32)

    def test_undecodable_bytes_return_none(self) -> None:
        assert image_dimensions(b"not an image") == (None, None)


class TestExtractMetadata:
    def test_image_metadata(self, png_bytes: bytes) -> None:
        metadata = extract_metadata(png_bytes, "image/png", "out.png")

        assert metadata.width == 64
        assert metadata.height == 32
        assert metadata.file_size == len(png_bytes)
        assert metadata.content_type == "image/png"
        assert metadata.filename == "out.png"

    def test_video_metadata_has_no_dimensions(self) -> None:
        metadata = extract_metadata(b"\x00" * 10, "video/mp4", "clip.mp4")

        assert metadata.width is None
        assert metadata.file_size == 10


class TestMerged:
    def test_ignores_none_changes(self) -> None:
        base = FileMetadata(width=10, file_size=5)

        merged = base.merged(width=None, height=20)

        assert merged == FileMetadata(width=10, height=20, file_size=5)
