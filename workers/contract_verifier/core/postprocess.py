"""
Artifact post-processor — optional strip of the built wasm module.

``wabt``       → ``wasm-strip -o <out> <in>``
``wasm-tools`` → ``wasm-tools strip -o <out> <in>``
"""
import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from contract_verifier.errors import PostProcessError
from contract_verifier.io.schema import StripTool

logger = logging.getLogger(__name__)

STRIPPED_FILENAME = "build-striped.wasm"
STRIP_TIMEOUT = 60


class PostProcessor:
    def __init__(self, wasm_strip: str = "wasm-strip", wasm_tools: str = "wasm-tools"):
        self.wasm_strip = wasm_strip
        self.wasm_tools = wasm_tools

    @classmethod
    def from_settings(cls, settings) -> "PostProcessor":
        return cls(wasm_strip=settings.WASM_STRIP, wasm_tools=settings.WASM_TOOLS)

    def strip_command(self, tool: StripTool, src: Path, dst: Path) -> List[str]:
        tool = StripTool(tool)
        if tool == StripTool.WABT:
            return [self.wasm_strip, "-o", str(dst), str(src)]
        return [self.wasm_tools, "strip", "-o", str(dst), str(src)]

    def process(self, artifact: Path, strip_tool: Optional[StripTool]) -> bytes:
        """Return the final bytes of *artifact*, stripped when requested."""
        if strip_tool is None:
            return artifact.read_bytes()

        dst = artifact.with_name(STRIPPED_FILENAME)
        cmd = self.strip_command(strip_tool, artifact, dst)
        logger.debug(f"Strip: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=STRIP_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise PostProcessError(f"{StripTool(strip_tool).value} failed to run: {e}") from e

        if result.returncode != 0:
            raise PostProcessError(
                f"{StripTool(strip_tool).value} exited {result.returncode}: {result.stderr.strip()}"
            )
        if not dst.is_file():
            raise PostProcessError(f"{StripTool(strip_tool).value} produced no output")
        return dst.read_bytes()
