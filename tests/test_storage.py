"""Tests for the local folder store, artifact cache and organizer."""

import pytest

from cashflow_automator.storage import (
    LocalFolderStore,
    StorageError,
    build_artifact_cache,
    cleanup_empty_folders,
    count_duplicate_files,
    find_duplicate_files,
    get_folder_stats,
    organize_all_files,
    organize_files,
    remove_duplicate_files,
)
from cashflow_automator.storage.organizer import iter_all_files


@pytest.fixture
def store(tmp_path):
    root = tmp_path / "dest"
    root.mkdir()
    return LocalFolderStore(root)


class TestLocalFolderStore:
    def test_find_or_create_folder(self, store):
        created = store.find_or_create_folder("2025-07-15")
        again = store.find_or_create_folder("2025-07-15")

        assert created == again
        assert created.is_dir()

    def test_list_files_by_type(self, store):
        (store.root / "b.pdf").write_bytes(b"x")
        (store.root / "a.PDF").write_bytes(b"x")
        (store.root / "notes.txt").write_text("x")
        (store.root / ".hidden.pdf").write_bytes(b"x")

        assert [f.name for f in store.list_files()] == ["a.PDF", "b.pdf"]
        assert len(store.list_files(extension=None)) == 3

    def test_list_folders_skips_hidden(self, store):
        store.find_or_create_folder("2025-07-15")
        store.find_or_create_folder(".trash")
        assert [p.name for p in store.list_folders()] == ["2025-07-15"]

    def test_move_file(self, store):
        source = store.root / "a.pdf"
        source.write_bytes(b"data")
        folder = store.find_or_create_folder("2025-07-15")

        target = store.move_file(source, folder)

        assert target == folder / "a.pdf"
        assert target.read_bytes() == b"data"
        assert not source.exists()

    def test_move_onto_existing_name_raises(self, store):
        folder = store.find_or_create_folder("2025-07-15")
        (folder / "a.pdf").write_bytes(b"old")
        source = store.root / "a.pdf"
        source.write_bytes(b"new")

        with pytest.raises(StorageError):
            store.move_file(source, folder)
        assert (folder / "a.pdf").read_bytes() == b"old"
        assert source.exists()

    def test_create_file_leaves_no_temp_files(self, store):
        path = store.create_file("a.pdf", b"%PDF")

        assert path.read_bytes() == b"%PDF"
        assert [p.name for p in store.root.iterdir()] == ["a.pdf"]

    def test_create_file_replaces(self, store):
        store.create_file("a.pdf", b"one")
        store.create_file("a.pdf", b"two")
        assert (store.root / "a.pdf").read_bytes() == b"two"

    def test_trash(self, store):
        path = store.create_file("a.pdf", b"x")
        trashed = store.trash(path)

        assert not path.exists()
        assert trashed.parent == store.root / ".trash"
        assert trashed.name.endswith("_a.pdf")


class TestArtifactCache:
    def test_scans_root_and_date_folders(self, store):
        store.create_file("root.pdf", b"x")
        store.create_file("dated.pdf", b"x", store.find_or_create_folder("2025-07-15"))
        store.create_file("other.pdf", b"x", store.find_or_create_folder("archive"))
        store.create_file("notes.txt", b"x")
        store.create_file(
            "deep.pdf", b"x", store.find_or_create_folder("nested", store.root / "2025-07-15")
        )

        assert build_artifact_cache(store) == {"root.pdf", "dated.pdf"}

    def test_empty_store(self, store):
        assert build_artifact_cache(store) == frozenset()


class TestOrganizer:
    def test_organize_files(self, store):
        a = store.create_file("a.pdf", b"x")
        b = store.create_file("b.pdf", b"x")

        result = organize_files(store, {"2025-07-15": [a], "2025-07-16": [b]})

        assert len(result.moved) == 2
        assert result.folders_created == 2
        assert (store.root / "2025-07-15" / "a.pdf").exists()
        assert (store.root / "2025-07-16" / "b.pdf").exists()

    def test_failed_move_does_not_abort_group(self, store):
        folder = store.find_or_create_folder("2025-07-15")
        store.create_file("a.pdf", b"old", folder)
        a = store.create_file("a.pdf", b"new")
        b = store.create_file("b.pdf", b"x")

        result = organize_files(store, {"2025-07-15": [a, b]})

        assert [p.name for p in result.moved] == ["b.pdf"]
        assert [name for name, _ in result.failed] == ["a.pdf"]
        assert result.folders_created == 0

    def test_organize_all_files(self, store):
        store.create_file("Palermo_2025-07-15_MORNING.pdf", b"x")
        store.create_file("Palermo_2025-07-16_EVENING.pdf", b"x")
        store.create_file("no_date.pdf", b"x")

        result = organize_all_files(store)

        assert len(result.moved) == 2
        assert (store.root / "no_date.pdf").exists()
        assert (store.root / "2025-07-16" / "Palermo_2025-07-16_EVENING.pdf").exists()

    def test_folder_stats(self, store):
        store.create_file("root.pdf", b"12345")
        folder = store.find_or_create_folder("2025-07-15")
        store.create_file("a.pdf", b"123", folder)
        store.create_file("a.txt", b"1", folder)
        store.find_or_create_folder("archive")

        stats = get_folder_stats(store)

        assert stats.total_files == 3
        assert stats.total_pdfs == 2
        assert stats.date_folders == 1
        assert stats.total_size == 9
        assert stats.by_date["2025-07-15"].pdf_files == 1
        assert stats.by_date["2025-07-15"].total_files == 2

    def test_cleanup_empty_folders(self, store):
        store.find_or_create_folder("2025-07-15")
        full = store.find_or_create_folder("2025-07-16")
        store.create_file("a.pdf", b"x", full)
        store.find_or_create_folder("archive")

        assert cleanup_empty_folders(store) == 1
        assert [p.name for p in store.list_folders()] == ["2025-07-16", "archive"]


class TestDuplicates:
    @pytest.fixture
    def tree(self, store):
        store.create_file("a.pdf", b"root")
        one = store.find_or_create_folder("2025-07-15")
        store.create_file("a.pdf", b"one", one)
        deep = store.find_or_create_folder("x", one)
        store.create_file("a.pdf", b"deep", deep)
        store.create_file("b.pdf", b"b", deep)
        return store

    def test_iterates_whole_hierarchy(self, tree):
        assert sorted(f.name for f in iter_all_files(tree)) == ["a.pdf", "a.pdf", "a.pdf", "b.pdf"]

    def test_deep_hierarchy(self, store):
        folder = store.root
        for i in range(200):
            folder = store.find_or_create_folder(f"d{i}", folder)
        store.create_file("bottom.pdf", b"x", folder)

        assert [f.name for f in iter_all_files(store)] == ["bottom.pdf"]

    def test_find_duplicates(self, tree):
        duplicates = find_duplicate_files(tree)
        assert list(duplicates) == ["a.pdf"]
        assert duplicates["a.pdf"][0] == tree.root / "a.pdf"

    def test_count_duplicates(self, tree):
        assert count_duplicate_files(tree) == (1, 2)

    def test_remove_keeps_first(self, tree):
        assert remove_duplicate_files(tree) == 2
        assert (tree.root / "a.pdf").read_bytes() == b"root"
        assert count_duplicate_files(tree) == (0, 0)
