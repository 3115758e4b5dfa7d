"""
Tests for create / update / revert / delete on versioned files.

Business rule: a file's current content always equals the content of its
highest-numbered version, and version history only ever grows.
"""
import pytest
from sqlalchemy.exc import IntegrityError

from promptstash.core.exceptions import (
    AuthorizationError, ResourceNotFoundError, ValidationError,
)
from promptstash.models import FileType, Folder, Stash
from promptstash.services.file_service import FileService, file_service, generate_file_path


def version_map(versions):
    return {v.version: v.content for v in versions}


class TestEndToEnd:

    def test_create_update_noop_revert(self, db, stash_id, owner_id, read_file):
        file = file_service.create_file(
            db,
            stash_id=stash_id,
            name="greeting",
            content="hello",
            file_type=FileType.MARKDOWN,
            created_by=owner_id,
        )
        file_id = file.id
        assert file.content == "hello"
        assert [v.version for v in file_service.list_versions(db, file_id)] == [1]

        file = file_service.update_file(db, file_id, updated_by=owner_id, content="hello world")
        assert file.content == "hello world"
        assert [v.version for v in file_service.list_versions(db, file_id)] == [2, 1]

        file = file_service.update_file(db, file_id, updated_by=owner_id, content="hello world")
        assert len(file_service.list_versions(db, file_id)) == 2

        v1 = file_service.list_versions(db, file_id)[-1]
        file, version = file_service.revert_file(
            db, file_id, version_id=v1.id, reverted_by=owner_id
        )
        assert version.version == 3
        assert version.content == "hello"
        assert file.content == "hello"
        db.close()

        file, versions = read_file(file_id)
        assert file.content == "hello"
        assert version_map(versions) == {1: "hello", 2: "hello world", 3: "hello"}


class TestCreate:

    def test_default_path_from_name_and_type(self):
        assert generate_file_path("System Prompt", FileType.MARKDOWN) == "system-prompt.md"
        assert generate_file_path("  eval  set ", FileType.JSONL) == "eval-set.jsonl"
        assert generate_file_path("config", FileType.YAML) == "config.yaml"

    def test_create_with_explicit_path_and_tags(self, db, stash_id, owner_id, tag_ids):
        draft_id, prod_id = tag_ids

        file = file_service.create_file(
            db,
            stash_id=stash_id,
            name="schema",
            content="{}",
            file_type=FileType.JSON,
            created_by=owner_id,
            path="schemas/output.json",
            tag_ids=[prod_id, draft_id, prod_id],
        )

        assert file.path == "schemas/output.json"
        assert sorted(tag.name for tag in file.tags) == ["draft", "prod"]
        versions = file_service.list_versions(db, file.id)
        assert [(v.version, v.content, v.created_by) for v in versions] == [(1, "{}", owner_id)]

    def test_folder_from_another_stash_is_rejected(
        self, db, session_factory, stash_id, owner_id
    ):
        with session_factory() as session:
            other_stash = Stash(name="Elsewhere", user_id=owner_id)
            session.add(other_stash)
            session.flush()
            folder = Folder(name="misc", path="misc", stash_id=other_stash.id)
            session.add(folder)
            session.flush()
            folder_id = folder.id
            session.commit()

        with pytest.raises(ValidationError):
            file_service.create_file(
                db,
                stash_id=stash_id,
                name="stray",
                content="x",
                file_type=FileType.MARKDOWN,
                created_by=owner_id,
                folder_id=folder_id,
            )

    def test_unknown_tag_rolls_back_the_file(self, db, stash_id, owner_id):
        with pytest.raises(ValidationError, match="Unknown tag ids"):
            file_service.create_file(
                db,
                stash_id=stash_id,
                name="tagged",
                content="x",
                file_type=FileType.MARKDOWN,
                created_by=owner_id,
                tag_ids=[424242],
            )

        stash = db.query(Stash).filter(Stash.id == stash_id).one()
        assert stash.files == []


class TestUpdate:

    def test_sequential_updates_number_without_gaps(self, db, make_file, owner_id, read_file):
        file_id = make_file(content="v1")

        for n in range(2, 7):
            file_service.update_file(db, file_id, updated_by=owner_id, content=f"v{n}")
        db.close()

        file, versions = read_file(file_id)
        assert [v.version for v in versions] == [1, 2, 3, 4, 5, 6]
        assert file.content == versions[-1].content == "v6"

    def test_unchanged_content_creates_no_version(self, db, make_file, owner_id):
        file_id = make_file(content="same")

        file_service.update_file(db, file_id, updated_by=owner_id, content="same")

        assert len(file_service.list_versions(db, file_id)) == 1

    def test_metadata_only_changes_create_no_version(self, db, make_file, owner_id, tag_ids):
        file_id = make_file()

        file = file_service.update_file(
            db, file_id, updated_by=owner_id, name="renamed", tag_ids=list(tag_ids)
        )

        assert file.name == "renamed"
        assert len(file.tags) == 2
        assert len(file_service.list_versions(db, file_id)) == 1

        file = file_service.update_file(db, file_id, updated_by=owner_id, tag_ids=[])
        assert file.tags == []

    def test_content_and_name_change_together(self, db, make_file, owner_id):
        file_id = make_file(content="old")

        file = file_service.update_file(
            db, file_id, updated_by=owner_id, name="new name", content="new"
        )

        assert (file.name, file.content) == ("new name", "new")
        latest = file_service.list_versions(db, file_id)[0]
        assert (latest.version, latest.content) == (2, "new")

    def test_missing_file_is_not_found(self, db, owner_id):
        with pytest.raises(ResourceNotFoundError):
            file_service.update_file(db, 9999, updated_by=owner_id, content="x")

    def test_zero_row_update_is_not_found(self, db):
        # the file vanished between the caller's check and the write
        with pytest.raises(ResourceNotFoundError):
            file_service._update_file_row(db, 9999, {"content": "x"})
        db.rollback()

    def test_failed_version_insert_rolls_back_content(self, db, make_file, read_file):
        file_id = make_file(content="before")

        # unknown author: the file row is updated, then the version insert fails
        with pytest.raises(IntegrityError):
            file_service.update_file(db, file_id, updated_by=999999, content="after")

        file, versions = read_file(file_id)
        assert file.content == "before"
        assert [v.version for v in versions] == [1]

    def test_write_committed_before_row_update_is_not_lost(
        self, db, make_file, owner_id, read_file, monkeypatch
    ):
        """A writer that lands between our transaction start and our UPDATE moves
        the file A -> B; setting it back to A must still record a version."""
        file_id = make_file(content="A")
        real_update_row = FileService._update_file_row

        def competing_write_first(session, target_id, values):
            real_update_row(session, target_id, {"content": "B"})
            file_service.versions.create_in_transaction(
                session, file_id=target_id, content="B", created_by=owner_id
            )
            real_update_row(session, target_id, values)

        monkeypatch.setattr(
            FileService, "_update_file_row", staticmethod(competing_write_first)
        )

        file_service.update_file(db, file_id, updated_by=owner_id, content="A")
        db.close()

        file, versions = read_file(file_id)
        assert version_map(versions) == {1: "A", 2: "B", 3: "A"}
        assert file.content == versions[-1].content

    def test_update_checks_owner_inside_transaction(
        self, db, make_file, owner_id, other_user_id, read_file
    ):
        file_id = make_file(content="mine")

        with pytest.raises(AuthorizationError):
            file_service.update_file(
                db, file_id, updated_by=other_user_id, content="theirs", owner_id=other_user_id
            )

        file, versions = read_file(file_id)
        assert file.content == "mine"
        assert len(versions) == 1

    def test_owner_can_update(self, db, make_file, owner_id):
        file_id = make_file(content="mine")

        file = file_service.update_file(
            db, file_id, updated_by=owner_id, content="still mine", owner_id=owner_id
        )

        assert file.content == "still mine"


class TestRevert:

    @pytest.fixture
    def abc_file(self, db, make_file, owner_id):
        file_id = make_file(content="a")
        file_service.update_file(db, file_id, updated_by=owner_id, content="b")
        file_service.update_file(db, file_id, updated_by=owner_id, content="c")
        db.commit()
        return file_id

    def test_revert_appends_new_version(self, db, abc_file, owner_id, read_file):
        originals = {v.version: (v.id, v.content, v.created_at)
                     for v in file_service.list_versions(db, abc_file)}
        v1_id = originals[1][0]

        file, version = file_service.revert_file(
            db, abc_file, version_id=v1_id, reverted_by=owner_id
        )
        assert (version.version, version.content) == (4, "a")
        assert file.content == "a"
        db.close()

        file, versions = read_file(abc_file)
        assert file.content == "a"
        assert version_map(versions) == {1: "a", 2: "b", 3: "c", 4: "a"}
        for v in versions[:3]:
            assert (v.id, v.content, v.created_at) == originals[v.version]

    def test_revert_to_latest_still_appends(self, db, abc_file, owner_id):
        latest = file_service.list_versions(db, abc_file)[0]

        _, version = file_service.revert_file(
            db, abc_file, version_id=latest.id, reverted_by=owner_id
        )

        assert (version.version, version.content) == (4, "c")

    def test_revert_to_version_of_another_file(self, db, abc_file, make_file, owner_id):
        other_id = make_file(name="other", content="foreign")
        foreign = file_service.list_versions(db, other_id)[0]

        with pytest.raises(ResourceNotFoundError):
            file_service.revert_file(db, abc_file, version_id=foreign.id, reverted_by=owner_id)

        assert file_service.get_file(db, abc_file).content == "c"
        assert len(file_service.list_versions(db, abc_file)) == 3


class TestDeleteAndOwnership:

    def test_delete_removes_versions(self, db, make_file, owner_id, read_file):
        file_id = make_file()
        file_service.update_file(db, file_id, updated_by=owner_id, content="more")

        file_service.delete_file(db, file_id)
        db.close()

        file, versions = read_file(file_id)
        assert file is None
        assert versions == []

    def test_delete_missing_file(self, db):
        with pytest.raises(ResourceNotFoundError):
            file_service.delete_file(db, 9999)

    def test_owned_file_checks_stash_owner(self, db, make_file, owner_id, other_user_id):
        file_id = make_file()

        assert file_service.get_owned_file(db, file_id, owner_id).id == file_id
        with pytest.raises(AuthorizationError):
            file_service.get_owned_file(db, file_id, other_user_id)

    def test_owned_stash(self, db, stash_id, owner_id, other_user_id):
        assert file_service.get_owned_stash(db, stash_id, owner_id).id == stash_id
        with pytest.raises(AuthorizationError):
            file_service.get_owned_stash(db, stash_id, other_user_id)
        with pytest.raises(ResourceNotFoundError):
            file_service.get_owned_stash(db, 9999, owner_id)

    def test_missing_version_is_not_found(self, db, make_file):
        file_id = make_file()

        with pytest.raises(ResourceNotFoundError):
            file_service.get_version(db, file_id, 9999)
