"""Execution platform descriptor and its directory-name encoding.

A :class:`Platform` names where a run was executed. Its
:attr:`Platform.platform_string` is both the stable on-disk identifier of a
run (``<base>/runs/<platform_string>/``) and a parseable encoding of the
platform itself.

Grammar::

    docker-{variant}-{arch}-ruby-{major.minor}
    local-{os}-{arch}-ruby-{ruby_version}
    asdf-{os}-{arch}-ruby-{ruby_version}

The version is the dot-joined segments after the literal ``ruby`` token.
Docker strings carry only ``major.minor``, so a docker platform round-trips
exactly when its ``ruby_version`` is given as ``major.minor``.

Example:
    >>> p = Platform.docker(ruby_version="3.3", variant="alpine", arch="arm64")
    >>> p.platform_string
    'docker-alpine-arm64-ruby-3.3'
    >>> parse_platform_string(p.platform_string) == p
    True
"""

import platform as _host
import sys
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from core.benchmark_result import coerce_version

RUBY_TOKEN: str = "ruby"


class PlatformKind(str, Enum):
    """How the interpreter was provisioned."""

    DOCKER = "docker"
    LOCAL = "local"
    ASDF = "asdf"


def detect_os() -> str:
    """Short OS name of the current host: ``macos``, ``linux`` or ``windows``."""
    name: str = sys.platform
    if name.startswith("darwin"):
        return "macos"
    if name.startswith("linux"):
        return "linux"
    if name.startswith(("win32", "cygwin", "msys")):
        return "windows"
    return "unknown"


def detect_arch() -> str:
    """Short CPU architecture of the current host."""
    machine: str = _host.machine().lower()
    if machine in ("x86_64", "amd64"):
        return "x86_64"
    if machine in ("aarch64", "arm64"):
        return "arm64"
    if machine.startswith("arm"):
        return "arm"
    return "unknown"


def major_minor(version: str) -> str:
    return ".".join(version.split(".")[:2])


class Platform(BaseModel):
    """Where a run was executed.

    Attributes:
        kind: Provisioning mechanism.
        ruby_version: Interpreter version. Docker platforms usually carry
            ``major.minor`` only.
        arch: CPU architecture segment (``arm64``, ``x86_64``...).
        variant: Docker image variant (``alpine``, ``ubuntu``). Docker only.
        os: Host OS segment. Local and asdf only.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    kind: PlatformKind
    ruby_version: str = Field(min_length=1)
    arch: str = Field(min_length=1)
    variant: str | None = None
    os: str | None = None

    @field_validator("ruby_version", mode="before")
    @classmethod
    def _coerce_ruby_version(cls, v: Any) -> Any:
        return coerce_version(v)

    @field_validator("arch", "variant", "os")
    @classmethod
    def _no_separator(cls, v: str | None) -> str | None:
        if v is not None and ("-" in v or not v):
            raise ValueError(f"platform segment must be non-empty without '-': {v!r}")
        return v

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "Platform":
        if self.kind is PlatformKind.DOCKER:
            if not self.variant:
                raise ValueError("Docker platform requires variant")
        elif not self.os:
            raise ValueError(f"{self.kind.value} platform requires os")
        return self

    # -- factories ----------------------------------------------------------

    @classmethod
    def docker(cls, ruby_version: str, variant: str, arch: str | None = None) -> "Platform":
        return cls(
            kind=PlatformKind.DOCKER,
            ruby_version=ruby_version,
            variant=variant,
            arch=arch or detect_arch(),
        )

    @classmethod
    def local(
        cls, ruby_version: str, os: str | None = None, arch: str | None = None,
    ) -> "Platform":
        return cls(
            kind=PlatformKind.LOCAL,
            ruby_version=ruby_version,
            os=os or detect_os(),
            arch=arch or detect_arch(),
        )

    @classmethod
    def asdf(
        cls, ruby_version: str, os: str | None = None, arch: str | None = None,
    ) -> "Platform":
        return cls(
            kind=PlatformKind.ASDF,
            ruby_version=ruby_version,
            os=os or detect_os(),
            arch=arch or detect_arch(),
        )

    @classmethod
    def current(
        cls,
        kind: PlatformKind | str,
        ruby_version: str,
        variant: str | None = None,
    ) -> "Platform":
        """Platform of the current host, with os and arch detected."""
        match PlatformKind(kind):
            case PlatformKind.DOCKER:
                if variant is None:
                    raise ValueError("Docker platform requires variant")
                return cls.docker(ruby_version=ruby_version, variant=variant)
            case PlatformKind.LOCAL:
                return cls.local(ruby_version=ruby_version)
            case PlatformKind.ASDF:
                return cls.asdf(ruby_version=ruby_version)

    # -- encodings ----------------------------------------------------------

    @property
    def platform_string(self) -> str:
        match self.kind:
            case PlatformKind.DOCKER:
                return (
                    f"docker-{self.variant}-{self.arch}-{RUBY_TOKEN}-"
                    f"{major_minor(self.ruby_version)}"
                )
            case PlatformKind.LOCAL | PlatformKind.ASDF:
                return (
                    f"{self.kind.value}-{self.os}-{self.arch}-{RUBY_TOKEN}-"
                    f"{self.ruby_version}"
                )

    @property
    def tags(self) -> list[str]:
        """``[kind, arch, ruby-major.minor, variant-or-os]``."""
        label: str | None = self.variant if self.kind is PlatformKind.DOCKER else self.os
        tags: list[str] = [
            self.kind.value,
            self.arch,
            f"{RUBY_TOKEN}-{major_minor(self.ruby_version)}",
        ]
        if label:
            tags.append(label)
        return tags

    @property
    def is_docker(self) -> bool:
        return self.kind is PlatformKind.DOCKER

    @property
    def is_local(self) -> bool:
        return self.kind in (PlatformKind.LOCAL, PlatformKind.ASDF)

    def to_hash(self) -> dict[str, Any]:
        """Plain form written to ``platform.yaml``."""
        out: dict[str, Any] = self.model_dump(mode="json", exclude_none=True)
        out["platform_string"] = self.platform_string
        out["tags"] = self.tags
        return out

    @classmethod
    def from_hash(cls, data: Mapping[str, Any]) -> "Platform":
        # platform_string and tags are derived; older files used "runtime"
        payload: dict[str, Any] = {
            k: v for k, v in data.items() if k not in ("platform_string", "tags")
        }
        if "kind" not in payload and "runtime" in payload:
            payload["kind"] = payload.pop("runtime")
        return cls.model_validate(payload)


def parse_platform_string(value: str) -> Platform:
    """Inverse of :attr:`Platform.platform_string`.

    Raises:
        ValueError: If ``value`` does not follow the platform grammar.
    """
    parts: list[str] = value.split("-")
    if len(parts) < 5 or parts[3] != RUBY_TOKEN:
        raise ValueError(f"Invalid platform string format: {value}")

    kind_token, label, arch = parts[0], parts[1], parts[2]
    version: str = ".".join(parts[4:])
    if not version or not label or not arch:
        raise ValueError(f"Invalid platform string format: {value}")

    try:
        kind: PlatformKind = PlatformKind(kind_token)
    except ValueError:
        raise ValueError(
            f"Invalid platform string format: {value} (unknown kind {kind_token!r})"
        ) from None

    match kind:
        case PlatformKind.DOCKER:
            return Platform(kind=kind, ruby_version=version, variant=label, arch=arch)
        case PlatformKind.LOCAL | PlatformKind.ASDF:
            return Platform(kind=kind, ruby_version=version, os=label, arch=arch)
