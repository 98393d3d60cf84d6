"""
Conversion of category and tracer names into identifiers.

Category names such as 'IJ-AVG-$' and tracer ids such as 'NOx' become
'C_IJ_AVG' and 'T_NOx', which are valid Python identifiers and can be used
as attribute or variable names downstream.
"""

import keyword
from collections.abc import Iterable
from typing import Literal

from bpchctm.errors import ErrorPolicy, IdentifierError, Outcome

Role = Literal["category", "tracer"]

PREFIXES = {"category": "C_", "tracer": "T_"}
CATEGORY_SUFFIXES = ("-$", "=$")
REMOVED = str.maketrans("", "", "$()")
REPLACED = str.maketrans({"-": "_", " ": "_", "/": "_", "=": "_"})


def is_identifier(name: str) -> bool:
    return name.isidentifier() and not keyword.iskeyword(name)


def clean_name(name: str, role: Role) -> str:
    """
    Apply the character substitutions and role prefix, without validating.
    """
    if role not in PREFIXES:
        raise ValueError(f"Unknown role '{role}'")
    name = name.strip()
    if role == "category" and name.endswith(CATEGORY_SUFFIXES):
        name = name[:-2]
    name = name.translate(REMOVED).translate(REPLACED)
    return PREFIXES[role] + name


def sanitize_name(name: str, role: Role, policy: ErrorPolicy | None = None) -> str:
    """
    Convert a category or tracer name into an identifier.

    Parameters
    ----------
    name : str
        Category name or tracer id.
    role : {'category', 'tracer'}
        Which kind of name `name` is.
    policy : ErrorPolicy, optional
        Decides what happens when no valid identifier can be produced.
        Strict by default.

    Returns
    -------
    str
        The sanitized identifier. In lenient mode an invalid identifier may be
        returned (with a warning when verbose).

    Raises
    ------
    IdentifierError
        In strict mode, if the result is not a valid identifier.
    """
    policy = policy or ErrorPolicy()
    safe = clean_name(name, role)
    if not is_identifier(safe):
        error = IdentifierError(
            f"Could not produce safe field name for {role} {name} (attempted '{safe}')"
        )
        if policy.handle(error, action="ignoring error") is Outcome.FATAL:
            raise error
    return safe


def sanitize_names(
    names: Iterable[str], role: Role, policy: ErrorPolicy | None = None
) -> list[str]:
    """
    Sanitize a list of names, checking the results are unique.

    Two different names mapping onto the same identifier is an error in strict
    mode. In lenient mode the later name gets a numeric suffix ('_2', '_3',
    ...) so that identifiers and names stay one-to-one.
    """
    policy = policy or ErrorPolicy()
    seen: dict[str, str] = {}
    result = []
    for name in names:
        safe = sanitize_name(name, role, policy)
        if safe in seen and seen[safe] != name:
            error = IdentifierError(
                f"{role.capitalize()} names '{seen[safe]}' and '{name}' "
                f"both map to '{safe}'"
            )
            if policy.handle(error, action="renaming") is Outcome.FATAL:
                raise error
            n = 2
            while f"{safe}_{n}" in seen:
                n += 1
            safe = f"{safe}_{n}"
        seen.setdefault(safe, name)
        result.append(safe)
    return result
