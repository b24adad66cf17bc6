"""Factor modules shared by several bundles into one common bundle."""

from __future__ import annotations

from collections import Counter
from typing import Sequence

from .constants import COMMON_BUNDLE_NAME
from .types import BundleConfig


def module_frequencies(bundles: Sequence[BundleConfig]) -> Counter[str]:
    """Count in how many bundles each module name appears."""

    counts: Counter[str] = Counter()
    for bundle in bundles:
        counts.update(bundle.modules.keys())
    return counts


def extract_common_bundle(
    bundles: Sequence[BundleConfig],
    common_name: str = COMMON_BUNDLE_NAME,
) -> list[BundleConfig]:
    """Move every module found in two or more bundles into `common_name`.

    Paths in the common bundle come from the first bundle that defines the
    module; paths for the same name are assumed identical across pages.
    Bundles already called `common_name` are merged into the target, so
    running this on its own output changes nothing. The common bundle is
    always last.
    """

    existing_common = [bundle for bundle in bundles if bundle.name == common_name]
    page_bundles = [bundle for bundle in bundles if bundle.name != common_name]

    counts = module_frequencies(bundles)
    shared = {name for name, count in counts.items() if count >= 2}

    common_modules: dict[str, str] = {}
    for bundle in bundles:
        for name, path in bundle.modules.items():
            if (name in shared or bundle.name == common_name) and name not in common_modules:
                common_modules[name] = path

    result = [
        bundle.with_modules(
            {name: path for name, path in bundle.modules.items() if name not in shared}
        )
        for bundle in page_bundles
    ]

    common_url = existing_common[0].url if existing_common else ""
    result.append(BundleConfig(name=common_name, url=common_url, modules=common_modules))
    return result


__all__ = ["extract_common_bundle", "module_frequencies"]
