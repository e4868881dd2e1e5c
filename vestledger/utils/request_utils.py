"""
Request body helpers shared by the blueprints.
"""

from flask import request


def get_json_object(error_cls):
    """
    JSON body of the current request as a dict.

    A missing or unparseable body reads as ``{}``; a body that parses to
    anything other than an object raises ``error_cls``.
    """
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise error_cls(f'Request body must be a JSON object, got {type(data).__name__}')
    return data
