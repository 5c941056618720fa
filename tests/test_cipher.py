import json
import sys
import urllib.parse
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from streamkeeper.cipher import (
    CipherPlan,
    PlanNTransform,
    PlanSignatureCipher,
    apply_operations,
    load_cipher_plan,
    n_transforms_from_plan,
    parse_operations,
    parse_signature_cipher,
)
from streamkeeper.errors import RemoteSourceError


def query_of(url):
    return dict(urllib.parse.parse_qsl(urllib.parse.urlparse(url).query))


def test_operations_accept_lists_and_strings():
    assert parse_operations([["reverse"], ["splice", 2], "swap:3"]) == (
        ("reverse", 0),
        ("splice", 2),
        ("swap", 3),
    )


def test_unknown_operation_is_rejected():
    with pytest.raises(ValueError):
        parse_operations([["rot13"]])


def test_apply_operations():
    assert apply_operations("abcdef", [("reverse", 0)]) == "fedcba"
    assert apply_operations("abcdef", [("splice", 2)]) == "cdef"
    assert apply_operations("abcdef", [("swap", 3)]) == "dbcaef"
    # swap index wraps around the string length
    assert apply_operations("abc", [("swap", 4)]) == "bac"


def test_signature_cipher_rebuilds_url_with_signature_param():
    plan = CipherPlan(version="test", signature_ops=(("reverse", 0),))
    descriptor = urllib.parse.urlencode(
        {"s": "321", "sp": "sig", "url": "https://media.example/videoplayback?itag=251"}
    )

    url = PlanSignatureCipher(plan).deobfuscate(descriptor, "abc12345678")

    params = query_of(url)
    assert params["sig"] == "123"
    assert params["itag"] == "251"


def test_signature_param_defaults_to_signature():
    descriptor = urllib.parse.urlencode({"s": "xy", "url": "https://media.example/v"})

    assert parse_signature_cipher(descriptor) == ("https://media.example/v", "signature", "xy")


def test_signature_cipher_without_plan_yields_nothing():
    descriptor = urllib.parse.urlencode({"s": "xy", "url": "https://media.example/v"})

    assert PlanSignatureCipher(None).deobfuscate(descriptor, "abc12345678") is None


def test_n_transform_rewrites_only_n_param():
    transform = PlanNTransform([("reverse", 0)])

    url = transform.transform_url("https://media.example/v?n=abc&itag=251")

    assert query_of(url) == {"n": "cba", "itag": "251"}


def test_n_transform_leaves_url_without_n_untouched():
    url = "https://media.example/v?itag=251"

    assert PlanNTransform([("reverse", 0)]).transform_url(url) == url
    assert PlanNTransform([]).transform_url(url + "&n=abc") == url + "&n=abc"


def test_load_cipher_plan(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text(
        json.dumps(
            {
                "version": "player-1",
                "signature_timestamp": 20073,
                "signature": [["reverse"]],
                "n": [["swap", 1]],
                "n_alternate": [["splice", 1]],
            }
        )
    )

    plan = load_cipher_plan(str(path))
    primary, alternate = n_transforms_from_plan(plan)

    assert plan.version == "player-1"
    assert plan.signature_timestamp == 20073
    assert primary.operations == (("swap", 1),)
    assert alternate.operations == (("splice", 1),)


@pytest.mark.parametrize("content", ["not json", "[1, 2]", '{"signature": [["explode"]]}'])
def test_bad_cipher_plan_raises_remote_source_error(tmp_path, content):
    path = tmp_path / "plan.json"
    path.write_text(content)

    with pytest.raises(RemoteSourceError):
        load_cipher_plan(str(path))


def test_missing_cipher_plan_raises_remote_source_error(tmp_path):
    with pytest.raises(RemoteSourceError):
        load_cipher_plan(str(tmp_path / "missing.json"))
