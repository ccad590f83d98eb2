"""Metadata package for stayopen."""

from __future__ import annotations

__title__ = "stayopen"
__package_name__ = "stayopen"
__version__ = "0.3.0"
__description__ = (
    "Request/response framing over long-lived stay-open command-line tools"
)
__email__ = "maintainers@stayopen.invalid"
__author__ = "stayopen contributors"
__github__ = "https://github.com/stayopen/stayopen"
__docs__ = "https://github.com/stayopen/stayopen#readme"
__tracker__ = "https://github.com/stayopen/stayopen/issues"
__pypi__ = "https://pypi.org/project/stayopen/"
__license__ = "MIT"
__copyright__ = "Copyright 2024- stayopen contributors"
