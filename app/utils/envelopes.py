from typing import Any, Dict, Optional, Sequence


def api_success(data: Any, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
	body: Dict[str, Any] = {"success": True, "data": data, "error": None}
	if meta is not None:
		body["meta"] = meta
	return body


def api_list(items: Sequence[Any]) -> Dict[str, Any]:
	"""Success envelope for collection endpoints, with the item count in meta."""
	return api_success(list(items), meta={"count": len(items)})


def api_error(code: str, message: str, details: Optional[Any] = None) -> Dict[str, Any]:
	error: Dict[str, Any] = {"code": code, "message": message}
	if details is not None:
		error["details"] = details
	return {"success": False, "data": None, "error": error}
