"""Shared fixtures: a frozen config and fake HTTP responses for a mock session."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from miner_agent.config import AgentConfig, Identity


def make_response(status=200, body=None, text=None):
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status
    resp.ok = 200 <= status < 400
    resp.reason = "OK" if resp.ok else "Error"
    if body is not None:
        raw = json.dumps(body)
        resp.json.return_value = body
    else:
        raw = text or ""
        resp.json.side_effect = ValueError("no json")
    resp.text = raw
    resp.content = raw.encode()
    return resp


@pytest.fixture
def identity():
    return Identity(wallet="0xWALLET", host_id="HOST-1", device_id="rig-a")


@pytest.fixture
def config(identity):
    return AgentConfig(
        identity            = identity,
        coord_url           = "http://coord.test",
        infer_url           = "http://infer.test",
        difficulty          = 0.5,
        recheck_probability = 0.1,
    )


@pytest.fixture
def session():
    s = MagicMock(spec=requests.Session)
    s.headers = {}
    return s
