import pytest
from conftest import make_config

from dxbridge.cConfig import DEFAULT_COLOR_MAP, PLACEHOLDER_CALLSIGN, cConfig
from dxbridge.cErrors import ConfigurationError

def test_defaults_fill_missing_sections():
    config = cConfig.with_defaults({})

    assert config.CLUSTER.PORT == 7300
    assert config.CLUSTER.CALLSIGN == PLACEHOLDER_CALLSIGN
    assert config.CLUSTER.COMMAND_ACK_TIMEOUT == 10.0
    assert config.RADIO.PORT == 4992
    assert config.RADIO.COLOR_MAP == DEFAULT_COLOR_MAP
    assert config.CACHE.MAX_SIZE == 1000
    assert config.CACHE.TTL_SECONDS is None
    assert config.CLUSTER.RECONNECT.INITIAL_DELAY == 5.0

def test_with_defaults_keeps_given_values_and_never_mutates_input():
    raw = {'CLUSTER': {'HOST': 'dxc.example.org', 'COMMANDS_AFTER_LOGIN': 'set/skimmer', 'RECONNECT': {'MAX_DELAY': 60}}}

    config = cConfig.with_defaults(raw)

    assert config.CLUSTER.HOST == 'dxc.example.org'
    assert config.CLUSTER.COMMANDS_AFTER_LOGIN == ['set/skimmer']
    assert config.CLUSTER.RECONNECT.MAX_DELAY == 60.0
    assert config.CLUSTER.RECONNECT.INITIAL_DELAY == 5.0
    assert raw == {'CLUSTER': {'HOST': 'dxc.example.org', 'COMMANDS_AFTER_LOGIN': 'set/skimmer', 'RECONNECT': {'MAX_DELAY': 60}}}

def test_section_of_wrong_type_falls_back_to_defaults():
    config = cConfig.with_defaults({'CACHE': 'big', 'COLOR_MAP': None})

    assert config.CACHE.MAX_SIZE == 1000

def test_unconvertible_value_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        cConfig.with_defaults({'CLUSTER': {'PORT': 'telnet'}})

def test_valid_configuration_passes_validation():
    make_config().validate()

def test_placeholder_callsign_is_rejected():
    config = make_config(CLUSTER={'CALLSIGN': PLACEHOLDER_CALLSIGN})

    with pytest.raises(ConfigurationError, match='CALLSIGN'):
        config.validate()

def test_every_problem_is_reported():
    config = make_config(CLUSTER={'HOST': ''}, WAVELOG={'API_KEY': ''}, RADIO={'ENABLED': True, 'HOST': ''})

    with pytest.raises(ConfigurationError) as info:
        config.validate()

    Message = str(info.value)
    assert "CLUSTER['HOST']" in Message
    assert "RADIO['HOST']" in Message
    assert "WAVELOG['URL']" in Message

def test_spot_pattern_needs_named_groups():
    config = make_config(CLUSTER={'SPOT_PATTERN': r'(?P<dx>\w+)'})

    with pytest.raises(ConfigurationError, match='named groups'):
        config.validate()

def test_backoff_factor_below_one_is_rejected():
    config = make_config(CLUSTER={'RECONNECT': {'INITIAL_DELAY': 1, 'MAX_DELAY': 10, 'BACKOFF_FACTOR': 0.5}})

    with pytest.raises(ConfigurationError, match='BACKOFF_FACTOR'):
        config.validate()

def test_color_map_keys_are_boolean_tuples():
    config = make_config(RADIO={'COLOR_MAP': {(1, 0, 0): '#FF123456'}})

    assert config.RADIO.COLOR_MAP == {(True, False, False): '#FF123456'}

@pytest.mark.asyncio
async def test_config_file_and_command_line_overrides(tmp_path):
    ConfigFile = tmp_path / 'dx_flex_bridge.cfg'
    ConfigFile.write_text(
        "CLUSTER = {'HOST': 'dxc.example.org', 'CALLSIGN': 'k7abc'}\n"
        "RADIO = {'HOST': '192.168.1.50'}\n"
        "WAVELOG = {'URL': 'https://log.example.org/', 'API_KEY': 'abc'}\n",
        encoding='utf-8',
    )

    config = await cConfig.init_async(['--config', str(ConfigFile), '--callsign', 'w1aw', '--port', '7373', '--no-radio', '--verbose'])

    assert config.CLUSTER.HOST == 'dxc.example.org'
    assert config.CLUSTER.CALLSIGN == 'W1AW'
    assert config.CLUSTER.PORT == 7373
    assert config.RADIO.ENABLED is False
    assert config.WAVELOG.URL == 'https://log.example.org'
    assert config.LOGGING.LEVEL == 'DEBUG'

@pytest.mark.asyncio
async def test_missing_config_file_is_a_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        await cConfig.init_async(['--config', str(tmp_path / 'missing.cfg')])

@pytest.mark.asyncio
async def test_syntax_error_in_config_file_is_a_configuration_error(tmp_path):
    ConfigFile = tmp_path / 'broken.cfg'
    ConfigFile.write_text("CLUSTER = {'HOST': \n", encoding='utf-8')

    with pytest.raises(ConfigurationError):
        await cConfig.read_config_file_async(ConfigFile)
