from __future__ import annotations

import re
from functools import cmp_to_key

from .client import MarketplaceError
from .models import Product, Version

_SEMVER_RE = re.compile(
    r"^([0-9]+)\.([0-9]+)\.([0-9]+)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


class NoVersionsError(MarketplaceError):
    def __init__(self, product: str) -> None:
        super().__init__(f"product \"{product}\" does not have any versions")
        self.product = product


class VersionDoesNotExistError(MarketplaceError):
    def __init__(self, product: str, version: str) -> None:
        super().__init__(f"product \"{product}\" does not have a version {version}")
        self.product = product
        self.version = version


def parse_semver(version: str) -> tuple[tuple[int, int, int], tuple[str, ...] | None]:
    """
    Strict MAJOR.MINOR.PATCH[-PRERELEASE][+BUILD]. Raises ValueError otherwise;
    "1.2", "v1.2.3" and "1.21.1_0" are all rejected.
    """
    m = _SEMVER_RE.match(version.strip()) if isinstance(version, str) else None
    if not m:
        raise ValueError(f"Unsupported version format: {version!r}")
    main = (int(m.group(1)), int(m.group(2)), int(m.group(3)))
    pre = tuple(m.group(4).split(".")) if m.group(4) else None
    return main, pre


def _compare_prerelease(pa: tuple[str, ...] | None, pb: tuple[str, ...] | None) -> int:
    if pa is None and pb is None:
        return 0
    if pa is None:
        return 1
    if pb is None:
        return -1

    for i in range(max(len(pa), len(pb))):
        if i >= len(pa):
            return -1
        if i >= len(pb):
            return 1
        x = pa[i]
        y = pb[i]
        x_num = x.isdigit()
        y_num = y.isdigit()
        if x_num and y_num:
            xi = int(x)
            yi = int(y)
            if xi != yi:
                return -1 if xi < yi else 1
            continue
        if x_num and not y_num:
            return -1
        if not x_num and y_num:
            return 1
        if x != y:
            return -1 if x < y else 1
    return 0


def _compare_semver(a: str, b: str) -> int:
    ma, pa = parse_semver(a)
    mb, pb = parse_semver(b)
    if ma != mb:
        return -1 if ma < mb else 1
    return _compare_prerelease(pa, pb)


def _compare_text(a: str, b: str) -> int:
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def compare_versions(a: str, b: str) -> int:
    """Pairwise ordering: semver when both parse, plain string order otherwise."""
    try:
        return _compare_semver(a, b)
    except ValueError:
        return _compare_text(a, b)


def is_semver(version: str) -> bool:
    try:
        parse_semver(version)
    except ValueError:
        return False
    return True


def latest_version(versions: list[Version]) -> Version | None:
    """
    Newest entry of ``versions``.

    Semver ordering applies only when every number in the list parses as
    semver; a single non-semver number switches the whole list to plain
    string comparison. Ties keep the earliest entry.
    """
    if not versions:
        return None

    if all(is_semver(v.number) for v in versions):
        cmp = _compare_semver
    else:
        cmp = _compare_text

    latest = versions[0]
    for v in versions[1:]:
        if cmp(latest.number, v.number) < 0:
            latest = v
    return latest


def sort_versions(versions: list[Version]) -> list[Version]:
    """Newest first, using the pairwise rule from compare_versions."""
    return sorted(versions, key=cmp_to_key(lambda a, b: compare_versions(a.number, b.number)), reverse=True)


def resolve_version(product: Product, requested: str | None) -> Version:
    if not requested:
        latest = latest_version(product.all_versions)
        if latest is None:
            raise NoVersionsError(product.slug)
        return latest

    version = product.find_version(requested)
    if version is None:
        raise VersionDoesNotExistError(product.slug, requested)
    return version
