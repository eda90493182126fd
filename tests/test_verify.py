"""Tests for lockfile validation and verification (Level 1 and Level 2)."""

import json
import os

import pytest

from datalock.codes import MemberFailureReason, MemberSkipReason, Outcome
from datalock.kernel import verify_members as verify_members_module
from datalock.kernel.hash_utils import BLAKE3, decode_canonical, digest_bytes, encode_canonical
from datalock.kernel.lockfile import Member, SkippedEntry, build_lockfile
from datalock.kernel.self_hash import compute_self_hash
from datalock.kernel.verify import (
    LockfileRejected,
    has_traversal,
    is_absolute_member_path,
    validate_lockfile_document,
    verify_lockfile,
)
from datalock.kernel.verify_members import MembersResult, MemberSkip, members_outcome, verify_members


def _lock_bytes(root, names, algorithm="sha256", skipped=()):
    members = []
    for name in names:
        content = (root / name).read_bytes()
        members.append(Member(path=name, bytes_hash=digest_bytes(content, algorithm), size=len(content)))
    lockfile = build_lockfile(members, [SkippedEntry(path=p) for p in skipped], {}, tool_version="t")
    return lockfile.to_bytes()


def _self_hashed(document):
    document = dict(document)
    document["lock_hash"] = compute_self_hash(document)
    return encode_canonical(document)


def _verify(data, root=None, strict=False):
    return verify_lockfile(data, "data.lock.json", root=root, strict=strict, tool_version="9.9.9")


def _rejected(data, root=None):
    with pytest.raises(LockfileRejected) as excinfo:
        _verify(data, root=root)
    return excinfo.value.envelope


MEMBER = {"path": "a.csv", "bytes_hash": "sha256:" + "0" * 64, "size": 1}


def _doc(**overrides):
    document = {"version": "lock.v0", "lock_hash": "sha256:" + "0" * 64, "members": [dict(MEMBER)]}
    document.update(overrides)
    return document


class TestValidation:
    """Refusals raised before any hashing."""

    def test_malformed_json(self):
        envelope = _rejected(b'{"version": "lock.v0",\n  "members": [')
        assert envelope.code == "E_BAD_LOCKFILE"
        assert envelope.version == "lock-verify.v0"
        assert envelope.refusal.detail["line"] == 2
        assert envelope.refusal.detail["column"] is not None

    def test_invalid_utf8(self):
        envelope = _rejected(b'{"version":"\xff"}')
        assert envelope.code == "E_BAD_LOCKFILE"

    def test_not_an_object(self):
        envelope = _rejected(b"[]")
        assert envelope.refusal.detail == {"field": "document", "expected": "object"}

    def test_missing_fields(self):
        envelope = _rejected(encode_canonical({"version": "lock.v0"}))
        assert envelope.code == "E_BAD_LOCKFILE"
        assert envelope.refusal.detail["missing_fields"] == ["lock_hash", "members"]

    def test_lock_hash_wrong_type(self):
        envelope = _rejected(encode_canonical(_doc(lock_hash=None)))
        assert envelope.refusal.detail == {"field": "lock_hash", "expected": "string"}

    def test_members_wrong_type(self):
        envelope = _rejected(encode_canonical(_doc(members={})))
        assert envelope.refusal.detail == {"field": "members", "expected": "array"}

    def test_member_not_object(self):
        envelope = _rejected(encode_canonical(_doc(members=["a.csv"])))
        assert envelope.refusal.detail == {"field": "members[0]", "expected": "object"}

    def test_member_hash_wrong_type(self):
        envelope = _rejected(encode_canonical(_doc(members=[{"path": "a.csv", "bytes_hash": 1}])))
        assert envelope.refusal.detail["field"] == "members[0].bytes_hash"

    def test_unsupported_version(self):
        envelope = _rejected(encode_canonical(_doc(version="lock.v9")))
        assert envelope.code == "E_UNSUPPORTED_VERSION"
        assert envelope.refusal.detail == {"version": "lock.v9"}

    @pytest.mark.parametrize("path", ["/etc/passwd", "\\share\\a.csv", "C:\\data\\a.csv", "c:/a.csv"])
    def test_absolute_member_path(self, path):
        envelope = _rejected(encode_canonical(_doc(members=[dict(MEMBER, path=path)])))
        assert envelope.code == "E_BAD_LOCKFILE"
        assert envelope.refusal.detail == {"member_index": 0, "member_path": path}
        assert "absolute" in envelope.refusal.message

    @pytest.mark.parametrize("path", ["../a.csv", "data/../../a.csv", "data\\..\\a.csv", ".."])
    def test_traversal(self, path):
        envelope = _rejected(encode_canonical(_doc(members=[dict(MEMBER), dict(MEMBER, path=path)])))
        assert envelope.code == "E_BAD_LOCKFILE"
        assert envelope.refusal.detail == {"member_index": 1, "member_path": path}
        assert "traversal" in envelope.refusal.message

    def test_dotted_names_are_not_traversal(self):
        assert not has_traversal("a..b/c.csv")
        assert not has_traversal("...")
        assert not is_absolute_member_path("data/a.csv")

    def test_unknown_algorithm(self):
        envelope = _rejected(encode_canonical(_doc(members=[dict(MEMBER, bytes_hash="md5:abc")])))
        assert envelope.code == "E_UNKNOWN_ALGORITHM"
        assert envelope.refusal.detail == {"member_path": "a.csv", "algorithm": "md5"}

    def test_count_mismatch(self):
        envelope = _rejected(encode_canonical(_doc(member_count=3)))
        assert envelope.code == "E_BAD_LOCKFILE"
        assert envelope.refusal.detail == {"field": "member_count", "recorded": 3, "actual": 1}

    def test_skipped_count_mismatch(self):
        envelope = _rejected(encode_canonical(_doc(skipped=[], skipped_count=1)))
        assert envelope.refusal.detail["field"] == "skipped_count"

    def test_root_not_found(self, tmp_path):
        envelope = _rejected(encode_canonical(_doc()), root=tmp_path / "absent")
        assert envelope.code == "E_ROOT_NOT_FOUND"
        assert envelope.refusal.detail == {"root": str(tmp_path / "absent")}

    def test_root_that_is_a_file(self, tmp_path):
        file_root = tmp_path / "file"
        file_root.write_text("x")
        assert _rejected(encode_canonical(_doc()), root=file_root).code == "E_ROOT_NOT_FOUND"

    def test_validation_precedes_root_check(self, tmp_path):
        envelope = _rejected(encode_canonical(_doc(version="lock.v9")), root=tmp_path / "absent")
        assert envelope.code == "E_UNSUPPORTED_VERSION"

    def test_floats_in_document_refused(self):
        data = b'{"lock_hash":"","members":[],"version":"lock.v0","weight":1.5}'
        assert _rejected(data).code == "E_BAD_LOCKFILE"

    def test_every_refusal_suggests_next_command(self):
        envelope = _rejected(b"{")
        assert envelope.refusal.next_command

    def test_valid_document_returned_as_decoded(self):
        data = encode_canonical(_doc())
        assert validate_lockfile_document(data) == decode_canonical(data)


class TestLevelOne:
    """Self-hash only (no root)."""

    def test_untouched_lockfile_is_ok(self, dataset_root):
        report = _verify(_lock_bytes(dataset_root, ["a.csv"]))
        assert report.outcome is Outcome.VERIFY_OK
        assert report.lock_hash.valid
        assert report.members is None
        assert report.tool_versions == {"lock": "9.9.9"}
        assert report.lockfile == "data.lock.json"

    def test_tampered_lockfile_fails(self, dataset_root):
        document = decode_canonical(_lock_bytes(dataset_root, ["a.csv"]))
        document["note"] = "edited"
        report = _verify(encode_canonical(document))
        assert report.outcome is Outcome.VERIFY_FAILED
        assert not report.lock_hash.valid
        assert report.outcome.exit_code == 1

    def test_tampered_lockfile_skips_members_even_with_root(self, dataset_root):
        document = decode_canonical(_lock_bytes(dataset_root, ["a.csv"]))
        document["members"][0]["size"] += 1
        report = _verify(encode_canonical(document), root=dataset_root)
        assert report.outcome is Outcome.VERIFY_FAILED
        assert report.members is None

    def test_pretty_printed_lockfile_still_verifies(self, dataset_root):
        document = decode_canonical(_lock_bytes(dataset_root, ["a.csv"]))
        report = _verify(json.dumps(document, indent=4).encode("utf-8"))
        assert report.outcome is Outcome.VERIFY_OK

    def test_report_document_shape(self, dataset_root):
        document = _verify(_lock_bytes(dataset_root, ["a.csv"])).to_document()
        assert document["version"] == "lock-verify.v0"
        assert document["outcome"] == "VERIFY_OK"
        assert set(document["lock_hash"]) == {"stored", "computed", "valid"}
        assert document["members"] is None


class TestLevelTwo:
    """Members against a root directory."""

    def test_all_members_verified(self, dataset_root):
        report = _verify(_lock_bytes(dataset_root, ["a.csv", "c.txt", "nested/b.csv"]), root=dataset_root)
        assert report.outcome is Outcome.VERIFY_OK
        assert report.members.checked == 3
        assert report.members.verified == 3
        assert report.members.root == str(dataset_root)

    def test_blake3_members(self, dataset_root):
        report = _verify(_lock_bytes(dataset_root, ["a.csv"], algorithm=BLAKE3), root=dataset_root)
        assert report.outcome is Outcome.VERIFY_OK

    def test_missing_member(self, dataset_root):
        data = _lock_bytes(dataset_root, ["a.csv", "c.txt"])
        (dataset_root / "c.txt").unlink()
        report = _verify(data, root=dataset_root)
        assert report.outcome is Outcome.VERIFY_FAILED
        failure = report.members.failures[0]
        assert failure.reason is MemberFailureReason.MISSING
        assert failure.path == "c.txt"
        assert failure.actual is None
        assert report.members.verified == 1

    @pytest.mark.skipif(not hasattr(os, "symlink") or os.name == "nt", reason="needs POSIX symlinks")
    def test_dangling_symlink_is_missing(self, dataset_root, tmp_path):
        data = _lock_bytes(dataset_root, ["a.csv", "c.txt"])
        backing = tmp_path / "backing.txt"
        backing.write_bytes(b"plain text")
        (dataset_root / "c.txt").unlink()
        os.symlink(backing, dataset_root / "c.txt")
        backing.unlink()
        report = _verify(data, root=dataset_root)
        assert report.outcome is Outcome.VERIFY_FAILED
        assert report.members.skips == []
        assert report.members.failures[0].reason is MemberFailureReason.MISSING
        assert report.members.failures[0].path == "c.txt"

    def test_size_mismatch_skips_digest(self, dataset_root):
        data = _lock_bytes(dataset_root, ["a.csv"])
        (dataset_root / "a.csv").write_bytes(b"longer content than before")
        failure = _verify(data, root=dataset_root).members.failures[0]
        assert failure.reason is MemberFailureReason.SIZE_MISMATCH
        assert failure.actual is None
        assert failure.actual_size == len(b"longer content than before")

    def test_digest_mismatch_same_size(self, dataset_root):
        data = _lock_bytes(dataset_root, ["c.txt"])
        (dataset_root / "c.txt").write_bytes(b"PLAIN TEXT")
        failure = _verify(data, root=dataset_root).members.failures[0]
        assert failure.reason is MemberFailureReason.DIGEST_MISMATCH
        assert failure.actual == digest_bytes(b"PLAIN TEXT")
        assert failure.expected == digest_bytes(b"plain text")

    def test_members_without_size_skip_size_check(self, dataset_root):
        content = (dataset_root / "a.csv").read_bytes()
        data = _self_hashed({
            "version": "lock.v0",
            "lock_hash": "",
            "members": [{"path": "a.csv", "bytes_hash": digest_bytes(content)}],
        })
        assert _verify(data, root=dataset_root).outcome is Outcome.VERIFY_OK

    def test_read_error_is_partial(self, dataset_root, monkeypatch):
        def _denied(path, algorithm="sha256", chunk_size=0):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr(verify_members_module, "digest_file", _denied)
        report = _verify(_lock_bytes(dataset_root, ["a.csv"]), root=dataset_root)
        assert report.outcome is Outcome.VERIFY_PARTIAL
        skip = report.members.skips[0]
        assert skip.reason is MemberSkipReason.IO_ERROR
        assert "Permission denied" in skip.detail

    def test_strict_promotes_partial(self, dataset_root, monkeypatch):
        def _denied(path, algorithm="sha256", chunk_size=0):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr(verify_members_module, "digest_file", _denied)
        report = _verify(_lock_bytes(dataset_root, ["a.csv"]), root=dataset_root, strict=True)
        assert report.outcome is Outcome.VERIFY_FAILED

    def test_counts_add_up(self, dataset_root):
        data = _lock_bytes(dataset_root, ["a.csv", "c.txt", "nested/b.csv"])
        (dataset_root / "c.txt").unlink()
        (dataset_root / "a.csv").write_bytes(b"x")
        members = _verify(data, root=dataset_root).members
        assert members.checked == members.verified + members.failed + members.skipped
        assert members.failed == len(members.failures) == 2

    def test_skipped_entries_are_not_checked(self, dataset_root):
        data = _lock_bytes(dataset_root, ["a.csv"], skipped=["gone.csv"])
        report = _verify(data, root=dataset_root)
        assert report.outcome is Outcome.VERIFY_OK
        assert report.members.checked == 1


class TestMembersOutcome:
    def _result(self, failed=0, skipped=0):
        return MembersResult(
            root="/tmp",
            checked=1 + failed + skipped,
            verified=1,
            failed=failed,
            skipped=skipped,
            skips=[MemberSkip(path="x", reason=MemberSkipReason.IO_ERROR, detail="d")] * skipped,
        )

    def test_ok(self):
        assert members_outcome(self._result()) is Outcome.VERIFY_OK

    def test_failures_dominate(self):
        assert members_outcome(self._result(failed=1, skipped=1)) is Outcome.VERIFY_FAILED

    def test_skips_partial_unless_strict(self):
        assert members_outcome(self._result(skipped=1)) is Outcome.VERIFY_PARTIAL
        assert members_outcome(self._result(skipped=1), strict=True) is Outcome.VERIFY_FAILED

    def test_verify_members_accepts_plain_documents(self, dataset_root):
        content = (dataset_root / "a.csv").read_bytes()
        document = {"members": [{"path": "a.csv", "bytes_hash": digest_bytes(content), "size": len(content)}]}
        assert verify_members(document, dataset_root).verified == 1
