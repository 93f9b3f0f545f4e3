"""Tests for the local filesystem vault and reference parsing."""

import pytest

from vaultsync.attachments.exceptions import (
    DocumentNotFoundError,
    InvalidPathError,
    StorageError,
)
from vaultsync.attachments.vault import AttachmentFile, LocalVault, parse_references


@pytest.fixture
def local_vault(tmp_path):
    (tmp_path / "assets" / "sub").mkdir(parents=True)
    (tmp_path / "assets" / "a.png").write_bytes(b"png-a")
    (tmp_path / "assets" / "sub" / "b.jpg").write_bytes(b"jpg-b")
    (tmp_path / "notes").mkdir()
    (tmp_path / "notes" / "day.md").write_text("![[a.png]]")
    (tmp_path / "index.md").write_text("# Index")
    (tmp_path / ".obsidian").mkdir()
    (tmp_path / ".obsidian" / "hidden.md").write_text("hidden")
    return LocalVault(tmp_path)


class TestAttachmentFile:
    def test_parts(self):
        file = AttachmentFile("assets/sub/My Pic.PNG")
        assert file.name == "My Pic.PNG"
        assert file.stem == "My Pic"
        assert file.extension == "png"
        assert file.folder == "assets/sub"

    def test_dotfile_has_no_extension(self):
        file = AttachmentFile("assets/.hidden")
        assert file.extension == ""
        assert file.stem == ".hidden"

    def test_multiple_dots(self):
        file = AttachmentFile("assets/archive.tar.gz")
        assert file.stem == "archive.tar"
        assert file.extension == "gz"


class TestLocalVault:
    def test_root_must_exist(self, tmp_path):
        with pytest.raises(StorageError):
            LocalVault(tmp_path / "missing")

    def test_list_files_recursive_sorted(self, local_vault):
        files = local_vault.list_files("assets")
        assert [f.path for f in files] == ["assets/a.png", "assets/sub/b.jpg"]

    def test_list_files_missing_folder(self, local_vault):
        assert local_vault.list_files("nope") == []

    def test_list_documents_skips_hidden(self, local_vault):
        assert local_vault.list_documents() == ["index.md", "notes/day.md"]

    def test_folder_and_file_exists(self, local_vault):
        assert local_vault.folder_exists("assets")
        assert not local_vault.folder_exists("assets/a.png")
        assert local_vault.file_exists("assets/a.png")
        assert not local_vault.file_exists("assets")
        assert not local_vault.file_exists("../outside.png")

    def test_read_binary(self, local_vault):
        assert local_vault.read_binary("assets/a.png") == b"png-a"

    def test_read_missing_raises(self, local_vault):
        with pytest.raises(DocumentNotFoundError):
            local_vault.read_text("notes/missing.md")

    def test_write_text_atomic(self, local_vault):
        local_vault.write_text("notes/day.md", "updated")
        assert local_vault.read_text("notes/day.md") == "updated"
        leftovers = [p.name for p in (local_vault.root / "notes").iterdir()]
        assert leftovers == ["day.md"]

    def test_process_text_writes_only_on_change(self, local_vault):
        path = local_vault.root / "index.md"
        before = path.stat().st_mtime_ns

        result = local_vault.process_text("index.md", lambda text: text)

        assert result == "# Index"
        assert path.stat().st_mtime_ns == before

        result = local_vault.process_text("index.md", lambda text: text + "!")
        assert result == "# Index!"
        assert local_vault.read_text("index.md") == "# Index!"

    def test_rename_and_create_folder(self, local_vault):
        local_vault.create_folder("assets/archive")
        local_vault.rename("assets/a.png", "assets/archive/a.png")
        assert local_vault.file_exists("assets/archive/a.png")
        assert not local_vault.file_exists("assets/a.png")

    def test_rename_refuses_to_overwrite(self, local_vault):
        (local_vault.root / "assets" / "sub" / "a.png").write_bytes(b"other")
        with pytest.raises(StorageError, match="already exists"):
            local_vault.rename("assets/sub/a.png", "assets/a.png")
        assert local_vault.read_binary("assets/a.png") == b"png-a"

    def test_delete(self, local_vault):
        local_vault.delete("assets/a.png")
        assert not local_vault.file_exists("assets/a.png")
        with pytest.raises(DocumentNotFoundError):
            local_vault.delete("assets/a.png")

    @pytest.mark.parametrize("path", ["", "/etc/passwd", "../outside.md"])
    def test_invalid_paths(self, local_vault, path):
        with pytest.raises(InvalidPathError):
            local_vault.read_text(path)

    def test_get_references(self, local_vault):
        refs = local_vault.get_references("notes/day.md")
        assert refs.embeds == ["a.png"]
        assert refs.links == []


class TestParseReferences:
    def test_wiki_embed_alias_and_heading_stripped(self):
        refs = parse_references("![[a.png|300]] ![[doc.pdf#page=2]]")
        assert refs.embeds == ["a.png", "doc.pdf"]

    def test_markdown_embed(self):
        refs = parse_references('![x](assets/a.png "Title") ![y](<assets/my pic.png>)')
        assert refs.embeds == ["assets/a.png", "assets/my pic.png"]

    def test_markdown_path_with_space_kept_whole(self):
        refs = parse_references("![x](assets/my pic.png)")
        assert refs.embeds == ["assets/my pic.png"]

    def test_links_separate_from_embeds(self):
        refs = parse_references("[[a.png]] [doc](files/b.pdf) ![[c.png]]")
        assert refs.embeds == ["c.png"]
        assert refs.links == ["a.png", "files/b.pdf"]
        assert refs.all() == ["c.png", "a.png", "files/b.pdf"]
