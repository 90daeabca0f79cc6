"""JSON-in-text column helpers"""
import json


def dump_json(value):
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


def load_json(text):
    if text is None:
        return None
    return json.loads(text)
