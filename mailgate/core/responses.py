from typing import Any, Dict


def ok(data: Any = None) -> Dict[str, Any]:
    """成功回應的統一外層：{success: true, data}"""
    return {"success": True, "data": data}
