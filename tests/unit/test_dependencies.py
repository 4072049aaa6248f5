"""Unit tests for dependency accumulation and depfiles."""

import pytest

from buildorch.core.exceptions import PipelineError
from buildorch.services.dependencies import DependencyAccumulator, depfile_contents
from buildorch.storage import LocalWorkspace


class TestDepfileContents:
    """Tests for depfile rendering."""

    def test_format(self):
        """Test the make-style record.

        Verifies the target line and one continuation line per dependency.
        """
        text = depfile_contents("out/soong/build.ninja", ["a.bp", "b.bp"])
        assert text == "out/soong/build.ninja: \\\n a.bp \\\n b.bp\n"

    def test_spaces_escaped(self):
        """Test that spaces inside paths are escaped."""
        text = depfile_contents("out", ["dir with space/a.bp"])
        assert "dir\\ with\\ space/a.bp" in text


class TestDependencyAccumulator:
    """Tests for DependencyAccumulator."""

    def test_flush_writes_all_paths_in_order(self, temp_dir):
        """Test flushing accumulated paths.

        Verifies that every appended path appears in `<output>.d`, in order,
        duplicates included.
        """
        storage = LocalWorkspace(str(temp_dir))
        (temp_dir / "build.ninja").write_text("")
        acc = DependencyAccumulator(storage, ["soong.variables"])
        acc.append(["a.bp", "b.bp"])
        acc.add("a.bp")

        depfile = acc.flush("build.ninja")

        assert depfile == "build.ninja.d"
        content = (temp_dir / "build.ninja.d").read_text()
        assert content == depfile_contents("build.ninja", ["soong.variables", "a.bp", "b.bp", "a.bp"])
        assert acc.flushed

    def test_empty_paths_dropped(self, temp_dir):
        """Test that unset optional files are not listed."""
        acc = DependencyAccumulator(LocalWorkspace(str(temp_dir)), ["soong.variables", ""])
        acc.append(["", "x"])
        assert acc.paths == ["soong.variables", "x"]
        assert len(acc) == 2

    def test_flush_unproduced_output_fails(self, temp_dir):
        """Test flushing for a missing output.

        Verifies that a depfile is never written for an output that does not exist.
        """
        acc = DependencyAccumulator(LocalWorkspace(str(temp_dir)))
        with pytest.raises(PipelineError):
            acc.flush("never-written.ninja")
        assert not (temp_dir / "never-written.ninja.d").exists()

    def test_flush_only_once(self, temp_dir):
        """Test that a second flush is rejected."""
        (temp_dir / "out").write_text("")
        acc = DependencyAccumulator(LocalWorkspace(str(temp_dir)))
        acc.flush("out")
        with pytest.raises(PipelineError):
            acc.flush("out")

    def test_append_after_flush_fails(self, temp_dir):
        """Test that late appends cannot be silently lost."""
        (temp_dir / "out").write_text("")
        acc = DependencyAccumulator(LocalWorkspace(str(temp_dir)))
        acc.flush("out")
        with pytest.raises(PipelineError):
            acc.append(["late.bp"])

    def test_absolute_output(self, temp_dir):
        """Test that absolute outputs are used as given."""
        output = temp_dir / "abs" / "graph.json"
        output.parent.mkdir()
        output.write_text("[]")
        acc = DependencyAccumulator(LocalWorkspace("/nonexistent-top"), ["list"])
        acc.flush(str(output))
        assert (temp_dir / "abs" / "graph.json.d").exists()
