"""
test_workdir — scoped build directories.

Properties:
  - Entering always yields an empty source dir and an empty output dir.
  - Leaving removes the source dir and empties the output dir, on success
    and on exceptions alike.
  - The output dir itself survives (it may be a bind mount).
"""
import pytest

from contract_verifier.core.workdir import BuildDirs
from contract_verifier.errors import FatalWorkerError


class TestBuildDirs:

    def test_resets_leftovers(self, tmp_path):
        src, out = tmp_path / "src", tmp_path / "out"
        (src / "old").mkdir(parents=True)
        (src / "old" / "file.go").write_text("stale")
        out.mkdir()
        (out / "build.wasm").write_bytes(b"stale")

        with BuildDirs(src, out) as dirs:
            assert list(dirs.src_dir.iterdir()) == []
            assert list(dirs.output_dir.iterdir()) == []

    def test_cleanup_on_success(self, tmp_path):
        src, out = tmp_path / "src", tmp_path / "out"
        with BuildDirs(src, out) as dirs:
            (dirs.src_dir / "main.go").write_text("x")
            dirs.output_path("build.wasm").write_bytes(b"x")
        assert not src.exists()
        assert out.is_dir()
        assert list(out.iterdir()) == []

    def test_cleanup_on_error(self, tmp_path):
        src, out = tmp_path / "src", tmp_path / "out"
        with pytest.raises(RuntimeError):
            with BuildDirs(src, out) as dirs:
                (dirs.src_dir / "main.go").write_text("x")
                (dirs.output_dir / "nested").mkdir()
                raise RuntimeError("build blew up")
        assert not src.exists()
        assert list(out.iterdir()) == []

    def test_uncreatable_dir_is_fatal(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a dir")
        with pytest.raises(FatalWorkerError):
            with BuildDirs(tmp_path / "src", blocker / "out"):
                pass
