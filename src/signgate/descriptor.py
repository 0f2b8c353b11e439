"""
Cosigner setup parsing and descriptor rendering.

Setup file (BlueWallet multisig export, line oriented)
  # comment lines are ignored
  Name: vault            <- ignored, like any other unknown line
  Policy: 2 of 3         <- required, exactly once
  Derivation: m/48'/0'/0'/2'
  Format: P2WSH
  EAB239AA: xpub6E2H...  <- one line per cosigner, at least one

Rendered descriptor (receive branch 0, change branch 1)
  wsh(sortedmulti(2,[EAB239AA/48'/0'/0'/2']xpub.../0/*,...))
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Tuple

from .errors import MalformedSetupError
from .hdkeys import HARDENED, decode_extended_key
from .hexutil import is_fingerprint

logger = logging.getLogger(__name__)

DEFAULT_DERIVATION = "m/48'/0'/0'/2'"

_COMMENT_RE = re.compile(r"^#")
_POLICY_PREFIX_RE = re.compile(r"^Policy:", re.IGNORECASE)
_POLICY_RE = re.compile(r"^Policy:\s*(\d+)\s+of\s+(\d+)\s*$", re.IGNORECASE)
_DERIVATION_RE = re.compile(r"^Derivation:\s*(.+?)\s*$", re.IGNORECASE)
_FORMAT_RE = re.compile(r"^Format:\s*(.+?)\s*$", re.IGNORECASE)
_COSIGNER_RE = re.compile(r"^([0-9A-Fa-f]{8}):\s*(.+?)\s*$")

_DESCRIPTOR_RE = re.compile(r"^wsh\(sortedmulti\((\d+),(.+)\)\)$")
_KEY_ENTRY_RE = re.compile(r"^\[([0-9A-Fa-f]{8})/([^\]]*)\]([^/\[\]]+)/([01])/\*$")


class Branch(IntEnum):
    RECEIVE = 0
    CHANGE = 1


class ScriptFormat(Enum):
    P2WSH = "P2WSH"

    @property
    def template(self) -> str:
        return _TEMPLATES[self]

    @classmethod
    def parse(cls, tag: str) -> "ScriptFormat":
        for fmt in cls:
            if fmt.value == tag.strip().upper():
                return fmt
        raise MalformedSetupError(f"unsupported script format: {tag}")


_TEMPLATES: Dict[ScriptFormat, str] = {
    ScriptFormat.P2WSH: "wsh(sortedmulti({body}))",
}


@dataclass(frozen=True)
class PathStep:
    index: int
    hardened: bool

    @property
    def value(self) -> int:
        return self.index | HARDENED if self.hardened else self.index

    def __str__(self) -> str:
        return f"{self.index}'" if self.hardened else str(self.index)


@dataclass(frozen=True)
class DerivationPath:
    steps: Tuple[PathStep, ...]

    @classmethod
    def parse(cls, text: str) -> "DerivationPath":
        """Parse ``m/48'/0'/0'/2'``; ``h``/``H`` are accepted as hardened markers."""
        parts = text.strip().split('/')
        if not parts or parts[0] != 'm':
            raise MalformedSetupError(f"derivation path must start with 'm': {text!r}")
        steps: List[PathStep] = []
        for part in parts[1:]:
            hardened = part[-1:] in ("'", "h", "H")
            digits = part[:-1] if hardened else part
            if not digits.isdigit():
                raise MalformedSetupError(f"invalid derivation step {part!r} in {text!r}")
            index = int(digits)
            if index >= HARDENED:
                raise MalformedSetupError(f"derivation index {index} out of range")
            steps.append(PathStep(index, hardened))
        return cls(tuple(steps))

    def without_root(self) -> str:
        """Path as embedded in a key origin, i.e. with the leading ``m/`` removed."""
        return '/'.join(str(s) for s in self.steps)

    def __str__(self) -> str:
        return '/'.join(['m'] + [str(s) for s in self.steps])


@dataclass(frozen=True)
class Cosigner:
    fingerprint: str
    key_material: str


@dataclass(frozen=True)
class CosignerSetup:
    """Parsed multisig wallet configuration.

    Attributes:
        threshold: signatures required (K of N).
        derivation_path: base path shared by every cosigner.
        script_format: spending script template.
        cosigners: ordered cosigner entries; order fixes descriptor rendering order.
    """
    threshold: int
    cosigners: Tuple[Cosigner, ...]
    derivation_path: DerivationPath = field(default_factory=lambda: DerivationPath.parse(DEFAULT_DERIVATION))
    script_format: ScriptFormat = ScriptFormat.P2WSH

    def __post_init__(self) -> None:
        if not self.cosigners:
            raise MalformedSetupError("setup has no cosigner entries")
        if not 1 <= self.threshold <= len(self.cosigners):
            raise MalformedSetupError(
                f"threshold {self.threshold} must be between 1 and {len(self.cosigners)}"
            )
        seen = set()
        for c in self.cosigners:
            if not is_fingerprint(c.fingerprint):
                raise MalformedSetupError(f"invalid fingerprint {c.fingerprint!r}")
            fp = c.fingerprint.lower()
            if fp in seen:
                raise MalformedSetupError(f"duplicate cosigner fingerprint {c.fingerprint}")
            seen.add(fp)
            try:
                decode_extended_key(c.key_material)
            except ValueError as exc:
                raise MalformedSetupError(f"cosigner {c.fingerprint}: {exc}") from exc

    def find(self, fingerprint: str) -> Optional[int]:
        """Index of the cosigner with ``fingerprint`` (case-insensitive), or None."""
        for i, c in enumerate(self.cosigners):
            if c.fingerprint.lower() == fingerprint.lower():
                return i
        return None


def parse_setup(setup_text: str) -> CosignerSetup:
    """Parse a cosigner setup file into a CosignerSetup.

    Raises:
        MalformedSetupError: threshold line absent, duplicated or unparseable;
        no cosigner lines; declared N differing from the cosigner count;
        repeated Derivation or Format lines that disagree; any key that is
        not a valid extended public key.
    """
    policy: Optional[Tuple[int, int]] = None
    derivation: Optional[DerivationPath] = None
    fmt: Optional[ScriptFormat] = None
    cosigners: List[Cosigner] = []

    for raw_line in setup_text.splitlines():
        line = raw_line.strip()
        if not line or _COMMENT_RE.match(line):
            continue
        if _POLICY_PREFIX_RE.match(line):
            m = _POLICY_RE.match(line)
            if not m:
                raise MalformedSetupError(f"unparseable policy line: {line!r}")
            if policy is not None:
                raise MalformedSetupError("setup declares more than one policy line")
            policy = (int(m.group(1)), int(m.group(2)))
            continue
        m = _DERIVATION_RE.match(line)
        if m:
            path = DerivationPath.parse(m.group(1))
            if derivation is not None and path != derivation:
                raise MalformedSetupError(f"conflicting derivation lines: {derivation} and {path}")
            derivation = path
            continue
        m = _FORMAT_RE.match(line)
        if m:
            parsed_fmt = ScriptFormat.parse(m.group(1))
            if fmt is not None and parsed_fmt is not fmt:
                raise MalformedSetupError(f"conflicting format lines: {fmt.value} and {parsed_fmt.value}")
            fmt = parsed_fmt
            continue
        m = _COSIGNER_RE.match(line)
        if m:
            fingerprint, key = m.group(1), m.group(2)
            try:
                xkey = decode_extended_key(key)
            except ValueError as exc:
                raise MalformedSetupError(f"cosigner {fingerprint}: {exc}") from exc
            if xkey.is_private:
                raise MalformedSetupError(f"cosigner {fingerprint}: setup must only carry public keys")
            # descriptors only carry xpub/tpub, so SLIP-132 Zpub/Vpub are re-encoded
            cosigners.append(Cosigner(fingerprint, str(xkey.canonical())))
        # anything else is metadata we do not use (Name:, blank lines, ...)

    if policy is None:
        raise MalformedSetupError("setup has no 'Policy: K of N' line")
    if not cosigners:
        raise MalformedSetupError("setup has no cosigner entries")
    threshold, declared = policy
    if declared != len(cosigners):
        raise MalformedSetupError(
            f"policy declares {declared} cosigners but {len(cosigners)} were listed"
        )
    if threshold > declared:
        raise MalformedSetupError(f"policy threshold {threshold} exceeds {declared} cosigners")

    setup = CosignerSetup(
        threshold=threshold,
        cosigners=tuple(cosigners),
        derivation_path=derivation or DerivationPath.parse(DEFAULT_DERIVATION),
        script_format=fmt or ScriptFormat.P2WSH,
    )
    logger.debug("parsed %d-of-%d setup", setup.threshold, len(setup.cosigners))
    return setup


def render_descriptor(setup: CosignerSetup, branch: int) -> str:
    """Render the spending descriptor for ``branch`` (0 receive, 1 change)."""
    branch = Branch(branch)
    path = setup.derivation_path.without_root()
    keys = ''.join(
        f",[{c.fingerprint}/{path}]{c.key_material}/{int(branch)}/*" for c in setup.cosigners
    )
    return setup.script_format.template.format(body=f"{setup.threshold}{keys}")


def render_descriptors(setup: CosignerSetup) -> Tuple[str, str]:
    return render_descriptor(setup, Branch.RECEIVE), render_descriptor(setup, Branch.CHANGE)


def parse_descriptor(text: str) -> Tuple[CosignerSetup, Branch]:
    """Parse a descriptor produced by render_descriptor (optionally with ``#checksum``)."""
    body = text.strip()
    if '#' in body:
        body, checksum = body.split('#', 1)
        if descriptor_checksum(body) != checksum:
            raise MalformedSetupError("descriptor checksum mismatch")
    m = _DESCRIPTOR_RE.match(body)
    if not m:
        raise MalformedSetupError("descriptor is not a wsh(sortedmulti(...)) template")
    threshold = int(m.group(1))
    cosigners: List[Cosigner] = []
    paths = set()
    branches = set()
    for entry in m.group(2).split(','):
        km = _KEY_ENTRY_RE.match(entry)
        if not km:
            raise MalformedSetupError(f"unparseable descriptor key entry: {entry!r}")
        cosigners.append(Cosigner(km.group(1), km.group(3)))
        paths.add(km.group(2))
        branches.add(int(km.group(4)))
    if len(paths) != 1 or len(branches) != 1:
        raise MalformedSetupError("descriptor keys must share one derivation path and branch")
    setup = CosignerSetup(
        threshold=threshold,
        cosigners=tuple(cosigners),
        derivation_path=DerivationPath.parse('m/' + paths.pop()),
        script_format=ScriptFormat.P2WSH,
    )
    return setup, Branch(branches.pop())


def public_setup(setup: CosignerSetup) -> CosignerSetup:
    """Same setup with every private key replaced by its public half."""
    cosigners = tuple(
        Cosigner(c.fingerprint, str(decode_extended_key(c.key_material).neuter()))
        for c in setup.cosigners
    )
    return CosignerSetup(setup.threshold, cosigners, setup.derivation_path, setup.script_format)


def wallet_identity(setup: CosignerSetup) -> str:
    """Stable wallet name: receive checksum + change checksum of the public descriptors."""
    receive, change = render_descriptors(public_setup(setup))
    return descriptor_checksum(receive) + descriptor_checksum(change)


# Output descriptor checksum (BIP-380)
_INPUT_CHARSET = (
    "0123456789()[],'/*abcdefgh@:$%{}"
    "IJKLMNOPQRSTUVWXYZ&+-.;<=>?!^_|~"
    "ijklmnopqrstuvwxyzABCDEFGH`#\"\\ "
)
_CHECKSUM_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_GENERATOR = (0xf5dee51989, 0xa9fdca3312, 0x1bab10e32d, 0x3706b1677a, 0x644d626ffd)


def _polymod(symbols: List[int]) -> int:
    chk = 1
    for value in symbols:
        top = chk >> 35
        chk = (chk & 0x7ffffffff) << 5 ^ value
        for i in range(5):
            if (top >> i) & 1:
                chk ^= _GENERATOR[i]
    return chk


def _expand(s: str) -> List[int]:
    groups: List[int] = []
    symbols: List[int] = []
    for c in s:
        v = _INPUT_CHARSET.find(c)
        if v < 0:
            raise MalformedSetupError(f"character {c!r} not allowed in a descriptor")
        symbols.append(v & 31)
        groups.append(v >> 5)
        if len(groups) == 3:
            symbols.append(groups[0] * 9 + groups[1] * 3 + groups[2])
            groups = []
    if len(groups) == 1:
        symbols.append(groups[0])
    elif len(groups) == 2:
        symbols.append(groups[0] * 3 + groups[1])
    return symbols


def descriptor_checksum(descriptor: str) -> str:
    c = _polymod(_expand(descriptor) + [0] * 8) ^ 1
    return ''.join(_CHECKSUM_CHARSET[(c >> (5 * (7 - i))) & 31] for i in range(8))


def add_checksum(descriptor: str) -> str:
    return f"{descriptor}#{descriptor_checksum(descriptor)}"
