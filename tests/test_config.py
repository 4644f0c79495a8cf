import logging
import logging.handlers

import pytest
import yaml

from fs_crawler_elasticsearch.config.config import DEFAULT_CONFIG, build_config, get_index_names, load_config
from fs_crawler_elasticsearch.config.logging import configure_logging
from fs_crawler_elasticsearch.exceptions import ConfigurationError
from fs_crawler_elasticsearch.sources import build_source


def _config(**overrides):
    user_config = {'name': 'job', 'fs': {'url': '/data'}}
    for section, values in overrides.items():
        if isinstance(values, dict):
            user_config.setdefault(section, {}).update(values)
        else:
            user_config[section] = values
    return user_config


def test_defaults_are_merged_under_user_settings():
    config = build_config(_config(fs={'update_rate': '1m'}, elasticsearch={'bulk_size': 5}))

    assert config['fs']['update_rate'] == '1m'
    assert config['fs']['url'] == '/data'
    assert config['fs']['excludes'] == DEFAULT_CONFIG['fs']['excludes']
    assert config['elasticsearch']['bulk_size'] == 5
    assert config['elasticsearch']['flush_interval'] == DEFAULT_CONFIG['elasticsearch']['flush_interval']
    assert config['server']['protocol'] == 'local'

def test_defaults_are_not_mutated():
    config = build_config(_config(fs={'excludes': ['*.tmp']}))
    config['fs']['includes'].append('*.txt')
    assert DEFAULT_CONFIG['fs']['includes'] == []
    assert DEFAULT_CONFIG['fs']['excludes'] == ['*/~*']

def test_index_names_default_to_job_name():
    assert get_index_names(build_config(_config())) == ('job', 'job_folder')
    named = build_config(_config(elasticsearch={'index': 'docs'}))
    assert get_index_names(named) == ('docs', 'docs_folder')

@pytest.mark.parametrize('user_config,message', [
    ({'fs': {'url': '/data'}}, "'name'"),
    ({'name': 'job'}, "'fs.url'"),
    (_config(fs={'filename_as_id': True}), 'filename_as_id'),
    (_config(server={'protocol': 'gopher'}), 'gopher'),
    (_config(server={'protocol': 'ftp'}), 'server.hostname'),
    (_config(server={'protocol': 'ssh'}), 'server.hostname'),
    (_config(fs={'checksum': 'CRC99'}), 'CRC99'),
    (_config(fs={'update_rate': 'soon'}), 'soon'),
    (_config(elasticsearch={'byte_size': '10 parsecs'}), 'parsecs'),
    (_config(elasticsearch={'bulk_size': 0}), 'bulk_size'),
    (_config(fs={'max_retries': -1}), 'max_retries'),
    (_config(fs={'excludes': ['']}), 'pattern'),
])
def test_invalid_settings_are_rejected(user_config, message):
    with pytest.raises(ConfigurationError, match=message):
        build_config(user_config)

def test_filename_as_id_allowed_without_recursion():
    config = build_config(_config(fs={'filename_as_id': True, 'recursive': False}))
    assert config['fs']['filename_as_id'] is True

def test_remote_protocols_with_hostname_are_valid():
    ftp = build_config(_config(server={'protocol': 'ftp', 'hostname': 'ftp.example.com'}))
    ssh = build_config(_config(server={'protocol': 'ssh', 'hostname': 'sftp.example.com', 'pem_path': '/keys/id_rsa'}))
    assert ftp['server']['port'] is None
    assert build_source(ftp).port == 21
    assert build_source(ssh).port == 22

def test_load_config_from_file(tmp_path):
    path = tmp_path / 'crawler-config.yaml'
    path.write_text(yaml.safe_dump({
        'name': 'from_file',
        'fs': {'url': str(tmp_path), 'checksum': 'xxh64'},
        'elasticsearch': {'host': 'es.local'},
    }))

    config = load_config(str(path))

    assert config['name'] == 'from_file'
    assert config['fs']['checksum'] == 'xxh64'
    assert config['elasticsearch']['host'] == 'es.local'
    assert config['elasticsearch']['port'] == 9200

def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / 'nope.yaml'))

def test_load_config_rejects_non_mapping(tmp_path):
    path = tmp_path / 'crawler-config.yaml'
    path.write_text('- just\n- a list\n')
    with pytest.raises(ConfigurationError):
        load_config(str(path))

def test_configure_logging_writes_rotating_file(tmp_path):
    log_file = tmp_path / 'logs' / 'crawler.log'
    root_logger = configure_logging({'logging': {'level': 'DEBUG', 'file': str(log_file), 'console': False}})
    try:
        logging.getLogger('fs_crawler_elasticsearch.test').debug('hello from the crawler')
        for handler in root_logger.handlers:
            handler.flush()

        assert root_logger.level == logging.DEBUG
        assert isinstance(root_logger.handlers[0], logging.handlers.RotatingFileHandler)
        assert 'hello from the crawler' in log_file.read_text()
        assert logging.getLogger('elastic_transport').level == logging.WARNING
    finally:
        for handler in root_logger.handlers:
            handler.close()
        root_logger.handlers = []
