"""XY axis expansion — turns two swept parameters into a matrix of job parameter sets.

Given an X field with its values, a Y field with its values, and a set of
fixed default parameters, :func:`expand_axis_combinations` returns one
:class:`ParameterCombination` per (x, y) cell, row-major by Y::

    k = y_index * len(x_values) + x_index

Each cell splits its parameters into two disjoint groups:

  - ``images``: image references (fields named ``image``, ``image*`` or
    ``image_urls``), distinct and in insertion order: X image, Y image,
    then default-param images;
  - ``other_params``: every other field as a scalar.

The function is pure: no I/O, no store access, no provider knowledge.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Union


@dataclass(frozen=True)
class ImageRef:
    """Reference to an input image (URL or storage key)."""
    url: str

    def __str__(self) -> str:
        return self.url


ScalarValue = Union[str, int, float, bool]
ParamValue = Union[ScalarValue, ImageRef]

# group name -> field -> value, e.g. {"KSampler": {"seed": 5, "steps": 20}}
DefaultParams = Mapping[str, Mapping[str, Any]]


def is_image_field(name: str) -> bool:
    """A field carries images iff it is ``image``, starts with ``image``, or is ``image_urls``."""
    return name == "image" or name.startswith("image") or name == "image_urls"


def clean_axis_values(values: Iterable[str]) -> list[str]:
    """Trim every entry and drop the blank ones."""
    cleaned = []
    for value in values:
        text = str(value).strip()
        if text:
            cleaned.append(text)
    return cleaned


@dataclass
class ParameterCombination:
    """One cell of the XY matrix and its resolved parameter set."""
    x_index: int
    y_index: int
    x_value: str
    y_value: str
    images: list[ImageRef] = field(default_factory=list)
    other_params: dict[str, ScalarValue] = field(default_factory=dict)
    generation_id: str | None = None

    @property
    def image_urls(self) -> list[str]:
        return [img.url for img in self.images]

    def job_params(self) -> dict[str, Any]:
        """Flat, JSON-safe parameter set handed to a provider adapter."""
        params: dict[str, Any] = dict(self.other_params)
        if self.images:
            params["image_urls"] = self.image_urls
        return params


def _add_image(images: list[ImageRef], value: Any) -> None:
    # image_urls defaults may hold a list of references
    if isinstance(value, ImageRef):
        candidates: Iterable[Any] = [value.url]
    elif isinstance(value, (list, tuple)):
        candidates = value
    else:
        candidates = [value]
    for candidate in candidates:
        if candidate is None:
            continue
        text = str(candidate).strip()
        if not text:
            continue
        ref = ImageRef(text)
        if ref not in images:
            images.append(ref)


def _build_cell(
    x_field: str,
    x_value: str,
    y_field: str,
    y_value: str,
    default_params: DefaultParams,
) -> tuple[list[ImageRef], dict[str, ScalarValue]]:
    images: list[ImageRef] = []
    other: dict[str, ScalarValue] = {}

    x_is_image = is_image_field(x_field)
    y_is_image = is_image_field(y_field)

    if x_is_image:
        _add_image(images, x_value)
    else:
        other[x_field] = x_value

    if y_is_image:
        _add_image(images, y_value)
    else:
        other[y_field] = y_value

    # An axis that drives an image field suppresses only the default for that
    # same field; scalar axis fields keep their axis value over any default.
    skipped = set()
    if x_is_image:
        skipped.add(x_field)
    if y_is_image:
        skipped.add(y_field)

    _fold_defaults(images, other, default_params, skipped)
    return images, other


def _fold_defaults(
    images: list[ImageRef],
    other: dict[str, ScalarValue],
    default_params: DefaultParams,
    skipped: set[str],
) -> None:
    for inputs in default_params.values():
        if not isinstance(inputs, Mapping):
            continue
        for name, value in inputs.items():
            if name in skipped:
                continue
            if is_image_field(name):
                _add_image(images, value)
            elif name not in other:
                other[name] = value


def resolve_job_params(default_params: DefaultParams | None) -> dict[str, Any]:
    """Flatten grouped params for a single (non-swept) job."""
    images: list[ImageRef] = []
    other: dict[str, ScalarValue] = {}
    _fold_defaults(images, other, default_params or {}, set())
    params: dict[str, Any] = dict(other)
    if images:
        params["image_urls"] = [img.url for img in images]
    return params


def expand_axis_combinations(
    x_field: str,
    x_values: Iterable[str],
    y_field: str,
    y_values: Iterable[str],
    default_params: DefaultParams | None = None,
) -> list[ParameterCombination]:
    """Expand the XY sweep into ``len(x) * len(y)`` combinations.

    Returns ``[]`` when either axis has no non-blank value; the caller is
    responsible for reporting that as a validation error. Duplicate axis
    values are kept.
    """
    xs = clean_axis_values(x_values)
    ys = clean_axis_values(y_values)
    if not xs or not ys:
        return []

    defaults = default_params or {}
    combinations: list[ParameterCombination] = []
    for y_index, y_value in enumerate(ys):
        for x_index, x_value in enumerate(xs):
            images, other = _build_cell(x_field, x_value, y_field, y_value, defaults)
            combinations.append(ParameterCombination(
                x_index=x_index,
                y_index=y_index,
                x_value=x_value,
                y_value=y_value,
                images=images,
                other_params=other,
            ))
    return combinations


def merge_default_params(base: DefaultParams | None, override: DefaultParams | None) -> dict[str, dict[str, Any]]:
    """Layer *override* on top of *base*, group by group."""
    merged: dict[str, dict[str, Any]] = {}
    for source in (base or {}, override or {}):
        for group, inputs in source.items():
            if not isinstance(inputs, Mapping):
                continue
            merged.setdefault(group, {}).update(inputs)
    return merged
