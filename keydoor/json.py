import json as json_module
from typing import Any, Dict, List, Union

JSONType = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]


def bytes_to_str(data: Any) -> Any:
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8")
    elif isinstance(data, dict):
        for _k, _v in data.items():
            data[_k] = bytes_to_str(_v)
    elif isinstance(data, (list, tuple)):
        _l = list(data)
        for _k, _v in enumerate(_l):
            _l[_k] = bytes_to_str(_v)
        data = _l

    return data


def dumps(obj: JSONType, **kwargs: Any) -> str:
    try:
        ret = json_module.dumps(obj, **kwargs)
    except TypeError:
        # the built-in json module does not serialize bytes, retry after
        # converting them to str
        ret = json_module.dumps(bytes_to_str(obj), **kwargs)
    return ret


def loads(s: Union[str, bytes], **kwargs: Any) -> Any:
    return json_module.loads(s, **kwargs)
