# local_insight/core/cascade/stats.py
"""
Statistics panel (ONS): the longest cascade, and the only one that fans out.

    datasets ──(user picks a dataset)──▶ dataset
        ──(latest_version link)──▶ version
        ──(self link → dataset/edition/version)──▶ dimensions
        ──(one query per dimension)──▶ options[dimension]   (first option pre-selected)
        ──(every dimension selected)──▶ observations

Observations are only requested once every dimension's options have
arrived and every dimension has a selection.
"""

import json
from typing import Any, Dict, List, Optional

from local_insight.core.cascade.base import Cascade, CascadeSnapshot, Stage, StageView
from local_insight.core.config import settings
from local_insight.core.normalize import canonical_text, extract_metadata_pairs, pick_label, pick_value
from local_insight.core.schemas import Domain
from local_insight.core.sources import ons as ons_api

MAX_DATASETS = 60
MAX_OBSERVATIONS = 20
MAX_METADATA_PAIRS = 6


def dimension_names(dimensions: Any) -> List[str]:
    if not isinstance(dimensions, list):
        return []
    names = (canonical_text(d.get("name")) for d in dimensions if isinstance(d, dict))
    return [name for name in names if name]


def first_option(options: Any) -> Optional[str]:
    if not isinstance(options, list):
        return None
    for option in options:
        if isinstance(option, dict):
            code = canonical_text(option.get("option"))
            if code:
                return code
    return None


def describe_observation(observation: Any, metadata_limit: Optional[int] = None) -> Dict[str, Any]:
    pairs = extract_metadata_pairs(observation) or []
    if metadata_limit is not None:
        pairs = pairs[:metadata_limit]
    return {"value": pick_value(observation) or "n/a", "metadata": pairs}


def _version_parts(view: StageView) -> Optional[Dict[str, str]]:
    return ons_api.version_parts(view.data("version"))


# =========================
# Stage keys and fetchers
# =========================
def _datasets_key(view: StageView):
    return ("ons-datasets",)


async def _fetch_datasets(client, key):
    return await ons_api.list_datasets(client)


def _dataset_key(view: StageView):
    dataset_id = view.selection("datasets")
    return ("ons-dataset", dataset_id) if dataset_id else None


async def _fetch_dataset(client, key):
    return await ons_api.get_dataset(client, key[1])


def _version_key(view: StageView):
    href = ons_api.latest_version_href(view.data("dataset"))
    return ("ons-latest-version", href) if href else None


async def _fetch_version(client, key):
    return await ons_api.get_version(client, key[1])


def _dimensions_key(view: StageView):
    parts = _version_parts(view)
    if not parts:
        return None
    return ("ons-dimensions", parts["dataset_id"], parts["edition"], parts["version"])


async def _fetch_dimensions(client, key):
    _, dataset_id, edition, version = key
    return await ons_api.get_dimensions(client, dataset_id, edition, version)


def _option_branches(view: StageView) -> List[str]:
    return dimension_names(view.data("dimensions"))


def _options_key(view: StageView, dimension: str):
    parts = _version_parts(view)
    if not parts:
        return None
    return (
        "ons-options",
        parts["dataset_id"],
        parts["edition"],
        parts["version"],
        dimension,
        settings.ONS_OPTIONS_LIMIT,
        0,
    )


async def _fetch_options(client, key):
    _, dataset_id, edition, version, dimension, limit, offset = key
    return await ons_api.get_dimension_options(
        client, dataset_id, edition, version, dimension, limit=limit, offset=offset
    )


def _observations_key(view: StageView):
    parts = _version_parts(view)
    options = view.data("options")
    if not parts or not options:
        return None
    choices = {dimension: view.selection("options", dimension) for dimension in options}
    if not all(choices.values()):
        return None
    return (
        "ons-observations",
        parts["dataset_id"],
        parts["edition"],
        parts["version"],
        json.dumps(choices, sort_keys=True),
    )


async def _fetch_observations(client, key):
    _, dataset_id, edition, version, choices = key
    return await ons_api.get_observations(client, dataset_id, edition, version, json.loads(choices))


class StatsCascade(Cascade):
    domain = Domain.STATS
    terminal = "observations"
    stages = (
        Stage("datasets", _datasets_key, _fetch_datasets),
        Stage("dataset", _dataset_key, _fetch_dataset, depends_on="datasets"),
        Stage("version", _version_key, _fetch_version, depends_on="dataset"),
        Stage("dimensions", _dimensions_key, _fetch_dimensions, depends_on="version"),
        Stage(
            "options",
            _options_key,
            _fetch_options,
            depends_on="dimensions",
            default_selection=first_option,
            stale_time=settings.OPTIONS_STALE_TIME_SECONDS,
            branches=_option_branches,
        ),
        Stage("observations", _observations_key, _fetch_observations, depends_on="options"),
    )

    def initial_params(self) -> Dict[str, Any]:
        return {"search": ""}

    def present(self, snapshot: CascadeSnapshot) -> Dict[str, Any]:
        datasets = [d for d in snapshot.data("datasets") or [] if isinstance(d, dict)]
        needle = (snapshot.params.get("search") or "").strip().lower()
        if needle:
            datasets = [
                d for d in datasets
                if needle in (canonical_text(d.get("title")) or canonical_text(d.get("id"))).lower()
            ]

        options_stage = snapshot["options"]
        option_choices = snapshot.selections.get("options") or {}
        dimensions = []
        for name, child in (options_stage.branches or {}).items():
            options = child.state.data if isinstance(child.state.data, list) else []
            dimensions.append(
                {
                    "name": name,
                    "status": child.state.status.value,
                    "selected": option_choices.get(name),
                    "options": [
                        {
                            "id": canonical_text(o.get("option")) or None,
                            "label": canonical_text(o.get("label")) or canonical_text(o.get("option")),
                        }
                        for o in options
                        if isinstance(o, dict)
                    ],
                }
            )

        dataset = snapshot.data("dataset")
        observations = snapshot.data("observations")
        observation_view = None
        if snapshot["observations"].settled:
            if isinstance(observations, list):
                observation_view = {
                    "count": len(observations),
                    "primary": describe_observation(observations[0]) if observations else None,
                    "items": [
                        describe_observation(o, MAX_METADATA_PAIRS) for o in observations[:MAX_OBSERVATIONS]
                    ],
                }
            else:
                observation_view = {"count": 0, "primary": None, "items": [], "unexpected_shape": True}

        return {
            "datasets": [
                {"id": canonical_text(d.get("id")) or None, "title": pick_label(d, canonical_text(d.get("id")) or "Dataset")}
                for d in datasets[:MAX_DATASETS]
            ],
            "selected_dataset": snapshot.selections.get("datasets"),
            "dataset_title": pick_label(dataset, "Dataset") if isinstance(dataset, dict) else None,
            "version": ons_api.version_parts(snapshot.data("version")),
            "dimensions": dimensions,
            "observations": observation_view,
        }
