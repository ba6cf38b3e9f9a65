"""
Toolchain — the fixed set of supported build toolchains.

Each profile pins everything the sandbox needs: the image template, the
argument vector (wrapped in ``timeout``), the mount points inside the
container, where uploaded files land and which file the build must
produce. Supporting a new compiler release is a descriptor change, not a
code change.
"""
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Tuple

from contract_verifier.core.content_id import ContentEncoding

# Required AssemblyScript packages (name → must be present in dependencies)
ASC_TEST_UTILS_NAME = "@vsc.eco/contract-testing-utils"
ASC_SDK_NAME = "@vsc.eco/sdk"
ASC_NAME = "assemblyscript"
ASC_JSON_NAME = "assemblyscript-json"

SOURCE_UPLOAD = "upload"
SOURCE_REPO = "repo"


@dataclass(frozen=True)
class ToolchainProfile:
    """Everything needed to run one toolchain inside the sandbox."""

    language: str
    image_template: str                 # formatted with version=
    build_args: Tuple[str, ...]         # appended after `timeout <seconds>`
    source_kind: str                    # SOURCE_UPLOAD | SOURCE_REPO
    default_encoding: ContentEncoding

    source_mount: str = "/workdir"
    output_mount: str = "/out"
    output_file: str = "build.wasm"

    # Upload mode layout
    source_subdir: str = ""
    lockfile_names: FrozenSet[str] = frozenset()
    reserved_filenames: FrozenSet[str] = frozenset()
    required_dependencies: FrozenSet[str] = frozenset()

    # ToolchainDescriptor: version → dependent runtime/library versions
    descriptors: Mapping[str, Mapping[str, str]] = field(default_factory=dict)

    def image(self, version: str) -> str:
        return self.image_template.format(version=version)

    def command(self, timeout: int) -> List[str]:
        """Fixed argument vector with the wall-clock timeout wrapper."""
        return ["timeout", str(timeout), *self.build_args]

    def descriptor(self, version: str) -> Dict[str, str]:
        """Resolved dependency versions for *version* (KeyError if unsupported)."""
        return dict(self.descriptors[version])

    @property
    def supported_versions(self) -> List[str]:
        return sorted(self.descriptors)


TINYGO = ToolchainProfile(
    language="golang",
    image_template="tinygo/tinygo:{version}",
    build_args=(
        "tinygo",
        "build",
        "-gc=custom",
        "-scheduler=none",
        "-panic=trap",
        "-no-debug",
        "-target=wasm-unknown",
        "-o=/out/build.wasm",
        "./contract",
    ),
    source_kind=SOURCE_REPO,
    default_encoding=ContentEncoding.RAW,
    source_mount="/home/tinygo",
    descriptors={
        "0.37.0": {"go": "1.24.0", "llvm": "19.1.2"},
        "0.38.0": {"go": "1.24.4", "llvm": "19.1.2"},
    },
)

ASSEMBLYSCRIPT = ToolchainProfile(
    language="assemblyscript",
    image_template="node:{version}-alpine",
    build_args=(
        "sh",
        "-c",
        "corepack enable && pnpm install && "
        "pnpm exec asc assembly/index.ts --optimize --outFile /out/build.wasm",
    ),
    source_kind=SOURCE_UPLOAD,
    default_encoding=ContentEncoding.DAG_CBOR,
    source_subdir="assembly",
    lockfile_names=frozenset({"pnpm-lock.yaml"}),
    reserved_filenames=frozenset({"pnpm-lock.yaml", "pnpm-lock.yml", "package.json"}),
    required_dependencies=frozenset({ASC_TEST_UTILS_NAME, ASC_SDK_NAME, ASC_NAME, ASC_JSON_NAME}),
    descriptors={
        "20": {"node": "20"},
        "22": {"node": "22"},
    },
)

PROFILES: Dict[str, ToolchainProfile] = {
    p.language: p for p in (TINYGO, ASSEMBLYSCRIPT)
}


def get_profile(language: str) -> ToolchainProfile:
    """Look up a toolchain profile (KeyError for unsupported languages)."""
    return PROFILES[language]


def supported_languages() -> List[str]:
    return sorted(PROFILES)
