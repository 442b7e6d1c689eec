"""Unit tests for DiscordClient."""
import json
from datetime import datetime, timezone

import pytest
import requests
import responses

from chat_platform.discord_client import DiscordClient
from processor.errors import PlatformActionError, ValidationError
from processor.models import Scope

API = "https://discord.com/api/v10"
SCOPE = Scope('111', '222')
START = datetime(2026, 3, 8, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def client():
    return DiscordClient(token='bot-token', timeout=10)


@responses.activate
def test_create_scheduled_event(client):
    responses.add(responses.POST, f"{API}/guilds/111/scheduled-events", json={'id': '900'})

    event_id = client.create_scheduled_event(
        SCOPE,
        title='Bahrain Grand Prix',
        start=START,
        end=datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc),
        description='Season opener',
        location=''
    )

    assert event_id == '900'
    request = responses.calls[0].request
    assert request.headers['Authorization'] == 'Bot bot-token'
    payload = json.loads(request.body)
    assert payload['name'] == 'Bahrain Grand Prix'
    assert payload['entity_type'] == 3
    assert payload['scheduled_start_time'] == '2026-03-08T15:00:00+00:00'
    assert payload['entity_metadata'] == {'location': 'TBD'}


@responses.activate
def test_create_thread(client):
    responses.add(responses.POST, f"{API}/channels/222/threads", json={'id': '700'})

    thread_id = client.create_thread(SCOPE, 'Bahrain Grand Prix - 2026-03-08 15:00')

    assert thread_id == '700'
    payload = json.loads(responses.calls[0].request.body)
    assert payload == {
        'name': 'Bahrain Grand Prix - 2026-03-08 15:00',
        'type': 11,
        'auto_archive_duration': 1440,
    }


def test_create_thread_rejects_unsupported_archive_duration(client):
    with pytest.raises(ValidationError):
        client.create_thread(SCOPE, 'name', auto_archive_minutes=90)


@responses.activate
def test_get_interested_participants(client):
    responses.add(
        responses.GET,
        f"{API}/guilds/111/scheduled-events/900/users",
        json=[{'user': {'id': '1'}}, {'user': {'id': 2}}, {'guild_scheduled_event_id': '900'}]
    )

    assert client.get_interested_participants(SCOPE, '900') == {'1', '2'}


@responses.activate
def test_get_interested_participants_follows_pages(client):
    url = f"{API}/guilds/111/scheduled-events/900/users"
    first_page = [{'user': {'id': str(1000 + n)}} for n in range(100)]
    second_page = [{'user': {'id': str(2000 + n)}} for n in range(50)]
    responses.add(responses.GET, url, json=first_page)
    responses.add(responses.GET, url, json=second_page)

    users = client.get_interested_participants(SCOPE, '900')

    assert len(users) == 150
    assert len(responses.calls) == 2
    assert 'after' not in responses.calls[0].request.url
    assert 'after=1099' in responses.calls[1].request.url
    assert 'limit=100' in responses.calls[1].request.url


@responses.activate
def test_create_scheduled_event_without_id(client):
    responses.add(responses.POST, f"{API}/guilds/111/scheduled-events", json={'name': 'x'})

    with pytest.raises(PlatformActionError):
        client.create_scheduled_event(
            SCOPE, title='x', start=START, end=START, description='', location=''
        )


@responses.activate
def test_create_thread_with_empty_body(client):
    responses.add(responses.POST, f"{API}/channels/222/threads", status=204)

    with pytest.raises(PlatformActionError):
        client.create_thread(SCOPE, 'name')


@responses.activate
def test_find_event(client):
    responses.add(responses.GET, f"{API}/guilds/111/scheduled-events/900", json={'id': '900'})
    responses.add(responses.GET, f"{API}/guilds/111/scheduled-events/901", status=404,
                  json={'message': 'Unknown Guild Scheduled Event'})

    assert client.find_event(SCOPE, '900') is True
    assert client.find_event(SCOPE, '901') is False
    assert client.find_event(SCOPE, None) is False


@responses.activate
def test_find_thread_checks_guild(client):
    responses.add(responses.GET, f"{API}/channels/700", json={'id': '700', 'guild_id': '111'})
    responses.add(responses.GET, f"{API}/channels/701", json={'id': '701', 'guild_id': '999'})

    assert client.find_thread(SCOPE, '700') is True
    assert client.find_thread(SCOPE, '701') is False


@responses.activate
def test_search_event_matches_name_and_start(client):
    responses.add(
        responses.GET,
        f"{API}/guilds/111/scheduled-events",
        json=[
            {'id': '1', 'name': 'Bahrain Grand Prix', 'scheduled_start_time': '2026-03-09T15:00:00+00:00'},
            {'id': '2', 'name': 'Bahrain Grand Prix', 'scheduled_start_time': '2026-03-08T15:00:00+00:00'},
        ]
    )

    assert client.search_event(SCOPE, 'Bahrain Grand Prix', START) == '2'


@responses.activate
def test_search_thread_matches_parent_channel(client):
    responses.add(
        responses.GET,
        f"{API}/guilds/111/threads/active",
        json={'threads': [
            {'id': '1', 'name': 'Race - 2026-03-08 15:00', 'parent_id': '333'},
            {'id': '2', 'name': 'Race - 2026-03-08 15:00', 'parent_id': '222'},
        ]}
    )

    assert client.search_thread(SCOPE, 'Race - 2026-03-08 15:00') == '2'
    assert client.search_thread(SCOPE, 'Other') is None


@responses.activate
def test_end_event_and_archive_thread(client):
    responses.add(responses.PATCH, f"{API}/guilds/111/scheduled-events/900", json={'id': '900'})
    responses.add(responses.PATCH, f"{API}/channels/700", json={'id': '700'})

    client.end_event(SCOPE, '900')
    client.archive_and_lock_thread('700')

    assert json.loads(responses.calls[0].request.body) == {'status': 3}
    assert json.loads(responses.calls[1].request.body) == {'archived': True, 'locked': True}


@responses.activate
def test_post_message(client):
    responses.add(responses.POST, f"{API}/channels/700/messages", json={'id': 'm1'})

    client.post_message('700', 'hello')

    assert json.loads(responses.calls[0].request.body) == {'content': 'hello'}


@responses.activate
def test_http_error_raises_platform_action_error(client):
    responses.add(responses.POST, f"{API}/channels/222/threads", status=403,
                  json={'message': 'Missing Permissions'})

    with pytest.raises(PlatformActionError):
        client.create_thread(SCOPE, 'name')


@responses.activate
def test_connection_error_raises_platform_action_error(client):
    responses.add(responses.POST, f"{API}/channels/700/messages",
                  body=requests.ConnectionError('connection reset'))

    with pytest.raises(PlatformActionError):
        client.post_message('700', 'hello')


def test_event_link(client):
    assert client.event_link(SCOPE, '900') == 'https://discord.com/events/111/900'
