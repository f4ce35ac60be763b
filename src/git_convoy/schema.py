"""JSON Schema for ``status --json`` and MCP-compatible tool schema for AI agents."""

from __future__ import annotations

from ._version import __version__

# Bump on any incompatible change to the status JSON shape.
SCHEMA_VERSION = 1

_NULLABLE_INT = {"type": ["integer", "null"], "minimum": 0}
_MERGE_KIND = {"enum": ["merge", "squash", None]}


def _strict(properties: dict, **extra) -> dict:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
        **extra,
    }


def get_status_schema() -> dict:
    """JSON Schema (draft 2020-12) for the workspace summary."""
    defs = {
        "headMode": {
            "oneOf": [
                _strict({"kind": {"const": "attached"}, "branch": {"type": "string"}}),
                _strict({"kind": {"const": "detached"}}),
            ]
        },
        "identity": _strict(
            {
                "worktreeKind": {"enum": ["full", "linked"]},
                "headMode": {"$ref": "#/$defs/headMode"},
                "shallow": {"type": "boolean"},
            }
        ),
        "local": _strict(
            {
                "staged": {"type": "integer", "minimum": 0},
                "modified": {"type": "integer", "minimum": 0},
                "untracked": {"type": "integer", "minimum": 0},
                "conflicts": {"type": "integer", "minimum": 0},
            }
        ),
        "base": _strict(
            {
                "remote": {"type": ["string", "null"]},
                "ref": {"type": "string"},
                "configuredRef": {"type": ["string", "null"]},
                "ahead": {"type": "integer", "minimum": 0},
                "behind": {"type": "integer", "minimum": 0},
                "mergedIntoBase": _MERGE_KIND,
                "baseMergedIntoDefault": _MERGE_KIND,
                "conflictPredicted": {"type": ["boolean", "null"]},
            }
        ),
        "share": _strict(
            {
                "remote": {"type": "string"},
                "ref": {"type": ["string", "null"]},
                "refMode": {"enum": ["noRef", "implicit", "configured", "gone"]},
                "toPush": _NULLABLE_INT,
                "toPull": _NULLABLE_INT,
                "rebased": _NULLABLE_INT,
            }
        ),
        "repo": _strict(
            {
                "name": {"type": "string"},
                "path": {"type": "string"},
                "identity": {"oneOf": [{"$ref": "#/$defs/identity"}, {"type": "null"}]},
                "local": {"$ref": "#/$defs/local"},
                "base": {"oneOf": [{"$ref": "#/$defs/base"}, {"type": "null"}]},
                "share": {"oneOf": [{"$ref": "#/$defs/share"}, {"type": "null"}]},
                "operation": {
                    "enum": ["rebase", "merge", "cherry-pick", "revert", "bisect", "am", None]
                },
                "lastCommit": {"type": ["string", "null"], "format": "date-time"},
                "error": {"type": ["string", "null"]},
            }
        ),
    }
    return _strict(
        {
            "schemaVersion": {"const": SCHEMA_VERSION},
            "workspace": {"type": "string"},
            "branch": {"type": "string"},
            "base": {"type": ["string", "null"]},
            "repos": {"type": "array", "items": {"$ref": "#/$defs/repo"}},
            "total": {"type": "integer", "minimum": 0},
            "atRiskCount": {"type": "integer", "minimum": 0},
            "statusLabels": {"type": "array", "items": {"type": "string"}},
            "lastCommit": {"type": ["string", "null"], "format": "date-time"},
            "errorCount": {"type": "integer", "minimum": 0},
        },
        **{
            "$schema": "https://json-schema.org/draft/2020-12/schema",
            "$id": f"urn:git-convoy:status:v{SCHEMA_VERSION}",
            "title": "git-convoy workspace status",
            "$defs": defs,
        },
    )


def get_tool_schema() -> dict:
    """Generate MCP-compatible tool schema for AI agents."""
    return {
        "name": "git-convoy",
        "version": __version__,
        "description": "Read-only status engine for a workspace of sibling Git repositories that share one feature branch. Reports divergence from the base and share remotes, detects merged and squash-merged branches, and predicts conflicts without touching any working tree.",
        "usage": "git-convoy <command> [options]",
        "tools": [
            {
                "name": "status",
                "description": "Show the status of every repository in the workspace: local changes, ahead/behind counts against the base branch and the share branch, merge detection and predicted conflicts. Fetches first unless --no-fetch.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "repos": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Restrict to these repositories (default: all)",
                        },
                        "where": {
                            "type": "string",
                            "description": "Filter expression: ',' = OR, '+' = AND, '^' = NOT. Example: 'dirty+unpushed,^detached'",
                        },
                        "dirty": {
                            "type": "boolean",
                            "description": "Shorthand for --where dirty",
                            "default": False,
                        },
                        "json": {
                            "type": "boolean",
                            "description": "Output as JSON for machine parsing",
                            "default": False,
                        },
                        "no_fetch": {
                            "type": "boolean",
                            "description": "Skip fetching from remotes (faster but may show stale data)",
                            "default": False,
                        },
                        "sequential": {
                            "type": "boolean",
                            "description": "Run sequentially instead of parallel",
                            "default": False,
                        },
                    },
                    "required": [],
                },
                "outputSchema": get_status_schema(),
                "examples": [
                    {
                        "description": "Repositories that need attention",
                        "command": "git-convoy status --where 'dirty,unpushed,at-risk' --json",
                    },
                ],
            },
            {
                "name": "fetch",
                "description": "Fetch the share and base remotes of every repository. The only command that updates refs (remote-tracking refs only).",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "json": {"type": "boolean", "default": False},
                        "sequential": {"type": "boolean", "default": False},
                    },
                    "required": [],
                },
            },
            {
                "name": "conflicts",
                "description": "Predict conflicts of merging (or, with --rebase, rebasing) each repository's branch with its base. Uses simulated merges; nothing is written to refs, index or working tree.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "repos": {"type": "array", "items": {"type": "string"}},
                        "rebase": {"type": "boolean", "default": False},
                        "json": {"type": "boolean", "default": False},
                    },
                    "required": [],
                },
            },
            {
                "name": "retarget",
                "description": "Count how many local commits would be replayed when moving each repository onto a new base branch; commits whose change already exists on the new base are skipped.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "new_base": {"type": "string", "description": "Branch name on the base remote"},
                        "json": {"type": "boolean", "default": False},
                    },
                    "required": ["new_base"],
                },
            },
        ],
        "globalOptions": {
            "--json, -j": "Output in JSON format (recommended for AI agents)",
            "--sequential, -s": "Run operations sequentially instead of parallel",
            "--workspace, -w": "Workspace directory (default: nearest directory with .convoy/)",
        },
        "environment": {
            "GIT_CONVOY_FETCH_TIMEOUT": "Seconds before a fetch is killed (default 120, 0 disables)",
            "GIT_CONVOY_MAX_WORKERS": "Parallel workers (default 8)",
            "GIT_CONVOY_LOG_LEVEL": "Log level on stderr (default WARNING)",
            "GIT_CONVOY_MERGE_COMMIT_LIMIT": "Base commits scanned for squash merges (default 200)",
        },
        "notes": [
            "Exit status is 1 when any repository reported an error, 130 when aborted",
            "Press Escape during a fetch to skip it and show cached data",
            "Filter terms: dirty, unpushed, behind-share, behind-base, diverged, drifted, detached, operation, local, gone, shallow, merged, base-merged, base-missing, at-risk, clean, pushed, synced-base, synced-share, synced, stale, safe",
        ],
    }
