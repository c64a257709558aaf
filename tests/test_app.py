import ipaddress
import socket

import pytest

from ftpserv.app import (
    ServerOptions,
    main,
    parse_port_range,
    parse_subnet,
    setup_params,
    validate_params,
)
from ftpserv.config import ConfigError, ConfigList, ParamType, Settings

PASSWORD = "password"


def _valid_list(root):
    config_list = ConfigList(setup_params())
    config_list.edit_value("port", "2121")
    config_list.edit_value("rootPath", str(root))
    config_list.edit_value("portRange", "3000 4000")
    config_list.edit_value("subnet", "192.168.1.0/24")
    return config_list


def test_setup_params_names_and_defaults():
    params = setup_params()
    assert [p.name for p in params] == [
        "port", "userName", "passw", "rootPath", "anonEnable", "readOnly",
        "oneIp", "portRange", "subnet", "sslKeyPath", "sslCertPath",
    ]
    by_name = {p.name: p for p in params}
    assert by_name["port"].def_value == 2121
    assert by_name["port"].type == ParamType.NUMBER
    assert by_name["subnet"].def_value == "192.168.1.0/24"
    assert by_name["oneIp"].def_value is True
    assert by_name["rootPath"].type == ParamType.DIR


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1024 2048", (1024, 2048)),
        ("  1024   2048  ", (1024, 2048)),
        ("", (0, 0)),
        ("abc", (0, 0)),
        ("3000", (3000, 0)),
    ],
)
def test_parse_port_range(text, expected):
    assert parse_port_range(text) == expected


def test_parse_subnet_valid_and_host_bits():
    assert parse_subnet("192.168.1.0/24") == ipaddress.ip_network("192.168.1.0/24")
    assert parse_subnet("10.1.2.3/8") == ipaddress.ip_network("10.0.0.0/8")


@pytest.mark.parametrize("text", ["", "not a subnet", "192.168.1.0/99"])
def test_parse_subnet_invalid(text):
    assert parse_subnet(text) is None


def test_validate_params_accepts_valid(tmp_path):
    assert validate_params(_valid_list(tmp_path)) == ipaddress.ip_network("192.168.1.0/24")


def test_validate_params_bad_port(tmp_path):
    config_list = _valid_list(tmp_path)
    config_list.edit_value("port", "21")
    with pytest.raises(ConfigError, match="Port number must be between 1024 and 65535."):
        validate_params(config_list)


def test_validate_params_missing_root(tmp_path):
    config_list = _valid_list(tmp_path)
    config_list.param("rootPath").value = str(tmp_path / "missing")
    with pytest.raises(ConfigError, match=r"Directory not exists. \[Root path\]"):
        validate_params(config_list)


@pytest.mark.parametrize("port_range", ["", "4000 3000", "3000 3000", "80 3000", "3000 70000"])
def test_validate_params_bad_port_range(tmp_path, port_range):
    config_list = _valid_list(tmp_path)
    config_list.edit_value("portRange", port_range)
    with pytest.raises(ConfigError, match="Port range must be from min to max"):
        validate_params(config_list)


@pytest.mark.parametrize("subnet", ["garbage", "0.0.0.0/0"])
def test_validate_params_bad_subnet(tmp_path, subnet):
    config_list = _valid_list(tmp_path)
    config_list.edit_value("subnet", subnet)
    with pytest.raises(ConfigError, match="Parse subnet error:  " + subnet):
        validate_params(config_list)


def test_server_options_defaults_from_empty_settings(tmp_path):
    options = ServerOptions.from_settings(Settings(tmp_path / "none.conf", "public"))
    assert options.port == 2121
    assert options.one_ip is True
    assert options.read_only is False
    assert options.port_range == (0, 0)
    assert options.subnet == ipaddress.ip_network("192.168.1.0/24")


def test_server_options_round_trip(tmp_path):
    path = tmp_path / "app.conf"
    with Settings(path, "public") as settings:
        settings.set_value("port", 2500)
        settings.set_value("userName", "alice")
        settings.set_value("passw", PASSWORD)
        settings.set_value("rootPath", str(tmp_path))
        settings.set_value("readOnly", True)
        settings.set_value("oneIp", False)
        settings.set_value("portRange", "3000 4000")
        settings.set_value("subnet", "10.0.0.0/8")
    options = ServerOptions.from_settings(Settings(path, "public"))
    assert options.port == 2500
    assert options.user_name == "alice"
    assert options.password == PASSWORD
    assert options.root_path == str(tmp_path)
    assert options.read_only is True
    assert options.one_ip is False
    assert options.port_range == (3000, 4000)
    assert options.subnet == ipaddress.ip_network("10.0.0.0/8")


def test_main_set_saves_settings(tmp_path):
    path = tmp_path / "conf" / "app.conf"
    code = main([
        "--config", str(path),
        "--set", "port=2500",
        "--set", f"rootPath={tmp_path}",
        "--set", "portRange=3000 4000",
        "--set", "subnet=10.0.0.0/8",
        "--set", "readOnly=true",
    ])
    assert code == 0
    options = ServerOptions.from_settings(Settings(path, "public"))
    assert options.port == 2500
    assert options.root_path == str(tmp_path)
    assert options.port_range == (3000, 4000)
    assert options.subnet == ipaddress.ip_network("10.0.0.0/8")
    assert options.read_only is True
    assert options.one_ip is True


def test_main_set_rejects_invalid_and_writes_nothing(tmp_path):
    path = tmp_path / "app.conf"
    code = main([
        "--config", str(path),
        "--set", "port=80",
        "--set", f"rootPath={tmp_path}",
        "--set", "portRange=3000 4000",
    ])
    assert code == 2
    assert not path.exists()


def test_main_set_unknown_name(tmp_path):
    path = tmp_path / "app.conf"
    assert main(["--config", str(path), "--set", "nosuch=1"]) == 2
    assert not path.exists()


def test_main_set_requires_assignment_form(tmp_path):
    with pytest.raises(SystemExit) as info:
        main(["--config", str(tmp_path / "app.conf"), "--set", "port"])
    assert info.value.code == 2


def test_main_reports_port_in_use(tmp_path):
    path = tmp_path / "app.conf"
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
        busy.bind(("0.0.0.0", 0))
        busy.listen()
        port = busy.getsockname()[1]
        with Settings(path, "public") as settings:
            settings.set_value("port", port)
            settings.set_value("rootPath", str(tmp_path))
            settings.set_value("subnet", "127.0.0.0/8")
        assert main(["--config", str(path)]) == 1