#!/usr/bin/env python3
"""Backend for the Stash Tagger plugin.

Proxies requests to the tagger sidecar API to bypass browser CSP restrictions.
"""
import json
import sys
import requests

CONNECTION_REFUSED = "Connection refused - is the tagger sidecar running?"


def main():
    """Handle plugin operations from Stash."""
    input_data = json.load(sys.stdin)

    args = input_data.get("args", {})
    mode = args.get("mode", "")

    # Get sidecar URL from args (passed by JS which reads settings)
    sidecar_url = args.get("sidecar_url", "http://localhost:5000").rstrip("/")

    if mode == "health":
        result = health_check(sidecar_url)
    elif mode == "search":
        result = search_scene(sidecar_url, args.get("scene_id"), args.get("query"))
    elif mode == "fingerprints":
        result = search_fingerprints(sidecar_url, args.get("scene_ids") or [])
    elif mode == "select":
        result = select_candidate(sidecar_url, args.get("scene_id"), args.get("candidate_id"))
    elif mode == "resolve":
        result = resolve_entity(
            sidecar_url,
            args.get("scene_id"),
            args.get("kind"),
            args.get("remote_id"),
            args.get("action"),
            args.get("local_id"),
        )
    elif mode == "save":
        result = save_scene(sidecar_url, args.get("scene_id"))
    elif mode == "cancel":
        result = cancel_scene(sidecar_url, args.get("scene_id"))
    else:
        result = {"error": f"Unknown mode: {mode}"}

    output = {"output": result}
    print(json.dumps(output))


def log(message):
    """Log a message to Stash."""
    print(json.dumps({"log": f"[Stash Tagger] {message}"}), file=sys.stderr)


def _error_detail(response):
    try:
        return response.json().get("detail", response.text)
    except ValueError:
        return response.text or f"HTTP {response.status_code}"


def _request(method, url, timeout, **kwargs):
    """Send a request to the sidecar; returns the JSON body or an error dict."""
    try:
        response = requests.request(method, url, timeout=timeout, **kwargs)
        if response.ok:
            return response.json()
        return {"error": f"HTTP {response.status_code}: {_error_detail(response)}"}
    except requests.ConnectionError:
        return {"error": CONNECTION_REFUSED}
    except requests.Timeout:
        return {"error": "Connection timed out"}
    except requests.RequestException as e:
        return {"error": f"Request failed: {e}"}


def health_check(sidecar_url):
    """Check sidecar health."""
    return _request("GET", f"{sidecar_url}/health", timeout=10)


def search_scene(sidecar_url, scene_id, query=None):
    """Search stash-box for one scene."""
    if not scene_id:
        return {"error": "No scene_id provided"}

    log(f"Searching scene {scene_id}" + (f" for '{query}'" if query else ""))
    payload = {"query": query} if query else {}
    return _request(
        "POST",
        f"{sidecar_url}/tagger/scenes/{scene_id}/search",
        timeout=60,
        json=payload,
    )


def search_fingerprints(sidecar_url, scene_ids):
    """Fingerprint-search a page of scenes."""
    if not scene_ids:
        return {"error": "No scene_ids provided"}

    log(f"Fingerprint search for {len(scene_ids)} scene(s)")
    return _request(
        "POST",
        f"{sidecar_url}/tagger/fingerprints",
        timeout=120,
        json={"scene_ids": [str(s) for s in scene_ids]},
    )


def select_candidate(sidecar_url, scene_id, candidate_id):
    """Select a candidate; the sidecar auto-resolves its studio, performers and tags."""
    if not scene_id or not candidate_id:
        return {"error": "scene_id and candidate_id are required"}

    return _request(
        "POST",
        f"{sidecar_url}/tagger/scenes/{scene_id}/select",
        timeout=120,
        json={"candidate_id": str(candidate_id)},
    )


def resolve_entity(sidecar_url, scene_id, kind, remote_id, action, local_id=None):
    """Apply a link, create or skip decision to one entity of the selected candidate."""
    if not scene_id or not kind or not remote_id or not action:
        return {"error": "scene_id, kind, remote_id and action are required"}

    payload = {"kind": kind, "remote_id": str(remote_id), "action": action}
    if local_id:
        payload["local_id"] = str(local_id)
    return _request(
        "POST",
        f"{sidecar_url}/tagger/scenes/{scene_id}/resolve",
        timeout=30,
        json=payload,
    )


def save_scene(sidecar_url, scene_id):
    """Save the selected candidate for a scene."""
    if not scene_id:
        return {"error": "No scene_id provided"}

    result = _request("POST", f"{sidecar_url}/tagger/scenes/{scene_id}/save", timeout=180)
    if "error" not in result:
        log(f"Saved scene {scene_id}")
    return result


def cancel_scene(sidecar_url, scene_id):
    """Stop in-flight search or save work for a scene."""
    if not scene_id:
        return {"error": "No scene_id provided"}

    return _request("DELETE", f"{sidecar_url}/tagger/scenes/{scene_id}", timeout=10)


if __name__ == "__main__":
    main()
