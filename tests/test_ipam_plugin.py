import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest.mock import patch

import pytest

from multinic.ipam_plugin import (
    IPAMConfig,
    IPAMError,
    cmd_add,
    cmd_check,
    cmd_del,
    load_ipam_config,
)


class _Daemon:
    def __init__(self):
        self.replies = {}
        self.requests = []
        daemon = self

        class Handler(BaseHTTPRequestHandler):
            def do_POST(self):
                length = int(self.headers.get("Content-Length", 0))
                body = json.loads(self.rfile.read(length))
                daemon.requests.append((self.path, body))
                status, payload = daemon.replies.get(self.path, (404, None))
                data = json.dumps(payload).encode()
                self.send_response(status)
                self.send_header("Content-Length", str(len(data)))
                self.end_headers()
                self.wfile.write(data)

            def log_message(self, *args):
                pass

        self.server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self.port = self.server.server_address[1]
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)


@pytest.fixture
def daemon():
    d = _Daemon()
    d.thread.start()
    yield d
    d.server.shutdown()
    d.server.server_close()


MASTERS = ["eth0", "eth1"]
RESPONSES = [
    {"interface": "eth0", "ip": "192.168.0.65", "block": "24"},
    {"interface": "eth1", "ip": "192.168.1.66", "block": "24"},
]
CNI_ARGS = "IgnoreUnknown=1;K8S_POD_NAMESPACE=default;K8S_POD_NAME=mypod"


def make_conf(port, masters=MASTERS, version="1.0.0", **extra):
    conf = {
        "cniVersion": version,
        "name": "multi-nic-sample",
        "masters": masters,
        "subnet": "192.168.0.0/16",
        "ipam": {
            "type": "multi-nic-ipam",
            "hostBlock": 8,
            "interfaceBlock": 2,
            "daemonIP": "127.0.0.1",
            "daemonPort": port,
            "routes": [{"dst": "192.168.0.0/16"}],
        },
    }
    conf.update(extra)
    return json.dumps(conf)


def test_load_ipam_config_takes_network_name():
    config, version = load_ipam_config(make_conf(1234))
    assert version == "1.0.0"
    assert isinstance(config, IPAMConfig)
    assert config.name == "multi-nic-sample"
    assert config.daemon_port == 1234
    assert config.host_block == 8
    assert config.interface_block == 2
    assert [r.to_dict() for r in config.routes] == [{"dst": "192.168.0.0/16"}]


def test_load_ipam_config_missing_ipam():
    with pytest.raises(IPAMError, match="missing 'ipam' key"):
        load_ipam_config(json.dumps({"name": "x"}))


def test_load_ipam_config_bad_json():
    with pytest.raises(IPAMError, match="failed to load netconf"):
        load_ipam_config("{not json")


def test_cmd_add_without_masters_returns_empty_result():
    result = cmd_add(make_conf(1, masters=[]), CNI_ARGS)
    assert result["ips"] == []
    assert result["cniVersion"] == "1.0.0"


def test_cmd_add_requests_addresses(daemon):
    daemon.replies["/allocate"] = (200, RESPONSES)
    with patch("socket.gethostname", return_value="node-a"):
        result = cmd_add(make_conf(daemon.port), CNI_ARGS)
    assert result["ips"] == [
        {"address": "192.168.0.65/24", "interface": 0},
        {"address": "192.168.1.66/24", "interface": 1},
    ]
    assert result["routes"] == [{"dst": "192.168.0.0/16"}]
    path, body = daemon.requests[0]
    assert path == "/allocate"
    assert body == {
        "pod": "mypod",
        "namespace": "default",
        "host": "node-a",
        "def": "multi-nic-sample",
        "masters": MASTERS,
    }


def test_cmd_add_old_spec_adds_ip_version(daemon):
    daemon.replies["/allocate"] = (200, RESPONSES[:1])
    with patch("socket.gethostname", return_value="node-a"):
        result = cmd_add(make_conf(daemon.port, version="0.3.0"), CNI_ARGS)
    assert result["ips"] == [{"address": "192.168.0.65/24", "interface": 0, "version": "4"}]


def test_cmd_add_keeps_previous_result():
    prev = {"cniVersion": "1.0.0", "ips": [{"address": "10.0.0.5/24", "interface": 0}]}
    result = cmd_add(make_conf(1, prevResult=prev), CNI_ARGS)
    assert result["ips"] == prev["ips"]


def test_cmd_add_daemon_failure(daemon):
    daemon.replies["/allocate"] = (500, None)
    with patch("socket.gethostname", return_value="node-a"):
        with pytest.raises(IPAMError, match="failed to request ip"):
            cmd_add(make_conf(daemon.port), CNI_ARGS)


def test_cmd_check_requires_prev_result():
    with pytest.raises(IPAMError, match="required prevResult missing"):
        cmd_check(make_conf(1))


def test_cmd_check_no_ips():
    with pytest.raises(IPAMError, match="no ip allocated"):
        cmd_check(make_conf(1, prevResult={"ips": []}))


def test_cmd_check_subnet_membership():
    inside = {"ips": [{"address": "192.168.0.65/24"}]}
    assert cmd_check(make_conf(1, prevResult=inside)) is None
    outside = {"ips": [{"address": "10.0.0.1/24"}]}
    with pytest.raises(IPAMError, match="not in designated subnet"):
        cmd_check(make_conf(1, prevResult=outside))


def test_cmd_del_without_netns_does_nothing():
    assert cmd_del(make_conf(1), CNI_ARGS, "") is None


def test_cmd_del_reports_released_addresses(daemon):
    daemon.replies["/deallocate"] = (200, RESPONSES)
    with patch("socket.gethostname", return_value="node-a"):
        result = cmd_del(make_conf(daemon.port), CNI_ARGS, "/var/run/netns/test")
    assert [ip["address"] for ip in result["ips"]] == ["192.168.0.65/24", "192.168.1.66/24"]
    path, body = daemon.requests[0]
    assert path == "/deallocate"
    assert body["pod"] == "mypod"
    assert body["masters"] is None


def test_cmd_del_tolerates_daemon_failure(daemon):
    daemon.replies["/deallocate"] = (200, "")
    with patch("socket.gethostname", return_value="node-a"):
        result = cmd_del(make_conf(daemon.port), CNI_ARGS, "/var/run/netns/test")
    assert result["ips"] == []