import os
import pytest
from pathlib import Path

from compresso.domain.errors import OverwriteError, SecurityError, ValidationError
from compresso.domain.models import PathRole
from compresso.infrastructure.path_guard import PathGuard, default_protected_dirs, sanitize


@pytest.fixture
def sandbox(tmp_path):
    """Workspace with a protected 'system' directory and a writable 'work' directory."""
    system = tmp_path / "system"
    (system / "bin").mkdir(parents=True)
    work = tmp_path / "work"
    work.mkdir()
    guard = PathGuard(protected_dirs=[system], root_dirs=[])
    return guard, system, work


def test_sanitize_strips_quotes_and_whitespace():
    assert sanitize('  "/tmp/my video.mp4" ') == "/tmp/my video.mp4"
    assert sanitize("'a.mp4'") == "a.mp4"
    assert sanitize("a'.mp4") == "a'.mp4"


def test_input_must_exist(sandbox):
    guard, _, work = sandbox
    with pytest.raises(ValidationError):
        guard.validate(str(work / "missing.mp4"), PathRole.INPUT)


def test_input_directory_rejected(sandbox):
    guard, _, work = sandbox
    with pytest.raises(ValidationError):
        guard.validate(str(work), PathRole.INPUT)


def test_input_ok(sandbox):
    guard, _, work = sandbox
    src = work / "in.mp4"
    src.write_bytes(b"x")
    validated = guard.validate(f'"{src}"', PathRole.INPUT)
    assert validated.real_path == src.resolve()
    assert validated.redirected is False
    assert validated.warnings == ()


def test_nul_byte_rejected(sandbox):
    guard, _, work = sandbox
    with pytest.raises(SecurityError):
        guard.validate(str(work / "a\x00.mp4"), PathRole.OUTPUT)


def test_empty_path_rejected(sandbox):
    guard, _, _ = sandbox
    with pytest.raises(ValidationError):
        guard.validate("  ", PathRole.OUTPUT)


def test_output_in_protected_dir_rejected(sandbox):
    guard, system, _ = sandbox
    with pytest.raises(SecurityError) as exc:
        guard.validate(str(system / "bin" / "out.mp4"), PathRole.OUTPUT)
    assert exc.value.path == system


def test_output_traversal_into_protected_dir_rejected(sandbox):
    guard, system, work = sandbox
    sneaky = f"{work}/../system/bin/out.mp4"
    with pytest.raises(SecurityError):
        guard.validate(sneaky, PathRole.OUTPUT)


def test_output_symlink_into_protected_dir_rejected(sandbox):
    guard, system, work = sandbox
    link = work / "innocent"
    os.symlink(system / "bin", link)
    with pytest.raises(SecurityError):
        guard.validate(str(link / "out.mp4"), PathRole.OUTPUT)


def test_traversal_outside_protected_is_only_a_warning(sandbox, caplog):
    guard, _, work = sandbox
    (work / "sub").mkdir()
    target = f"{work}/sub/../out.mp4"
    validated = guard.validate(target, PathRole.OUTPUT)
    assert validated.real_path == (work / "out.mp4").resolve()
    assert any("traversal" in w.lower() for w in validated.warnings)
    assert "PATH_TRAVERSAL" in caplog.text


def test_symlink_redirect_recorded(sandbox):
    guard, _, work = sandbox
    real_dir = work / "real"
    real_dir.mkdir()
    os.symlink(real_dir, work / "alias")
    validated = guard.validate(str(work / "alias" / "out.mp4"), PathRole.OUTPUT)
    assert validated.redirected is True
    assert validated.real_path == (real_dir / "out.mp4").resolve()
    assert validated.warnings


def test_existing_output_without_overwrite(sandbox):
    guard, _, work = sandbox
    out = work / "out.mp4"
    out.write_bytes(b"old")
    with pytest.raises(OverwriteError):
        guard.validate(str(out), PathRole.OUTPUT)
    # OverwriteError is a SecurityError
    with pytest.raises(SecurityError):
        guard.validate(str(out), PathRole.OUTPUT)
    assert guard.validate(str(out), PathRole.OUTPUT, overwrite_allowed=True).real_path == out.resolve()


def test_output_directory_target_rejected(sandbox):
    guard, _, work = sandbox
    with pytest.raises(ValidationError):
        guard.validate(str(work), PathRole.OUTPUT, overwrite_allowed=True)


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="needs FIFOs")
def test_output_special_file_rejected(sandbox):
    guard, _, work = sandbox
    fifo = work / "pipe.mp4"
    os.mkfifo(fifo)
    with pytest.raises(SecurityError):
        guard.validate(str(fifo), PathRole.OUTPUT, overwrite_allowed=True)


def test_output_parent_must_exist(sandbox):
    guard, _, work = sandbox
    with pytest.raises(ValidationError):
        guard.validate(str(work / "nope" / "out.mp4"), PathRole.OUTPUT)


def test_extra_protected_dirs(tmp_path):
    vault = tmp_path / "vault"
    vault.mkdir()
    guard = PathGuard(extra_protected_dirs=[vault])
    with pytest.raises(SecurityError):
        guard.validate(str(vault / "x.mp4"), PathRole.OUTPUT)


def test_root_only_protection(tmp_path):
    guard = PathGuard(protected_dirs=[], root_dirs=[tmp_path])
    with pytest.raises(SecurityError):
        guard.validate(str(tmp_path / "out.mp4"), PathRole.OUTPUT)
    (tmp_path / "nested").mkdir()
    guard.validate(str(tmp_path / "nested" / "out.mp4"), PathRole.OUTPUT)


@pytest.mark.skipif(os.name == "nt", reason="unix deny-list")
def test_default_unix_deny_list():
    trees, roots = default_protected_dirs()
    assert Path("/etc") in trees
    assert Path("/usr") in trees
    assert roots == [Path("/")]
    guard = PathGuard()
    with pytest.raises(SecurityError):
        guard.validate("/etc/passwd.mp4", PathRole.OUTPUT)
    with pytest.raises(SecurityError):
        guard.validate("/out.mp4", PathRole.OUTPUT)
