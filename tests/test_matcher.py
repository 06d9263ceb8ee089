import importlib
import logging


def _torrent(name, added_on=0, **kw):
    matcher = importlib.import_module('core.matcher')
    return matcher.Torrent(hash=kw.pop('hash', name), name=name, added_on=added_on, **kw)


def _movie(id_=1, has_file=True, path='Movie.Title.2020.1080p.BluRay-GRP.mkv'):
    return {
        'id': id_,
        'title': 'Movie Title',
        'year': 2020,
        'hasFile': has_file,
        'movieFile': {
            'relativePath': path,
            'quality': {'quality': {'resolution': 1080}},
            'releaseGroup': 'GRP',
        } if has_file else None,
    }


def _episode(id_, season, number, path, series_id=10):
    return {
        'id': id_,
        'seriesId': series_id,
        'seasonNumber': season,
        'episodeNumber': number,
        'hasFile': True,
        'episodeFile': {
            'relativePath': path,
            'quality': {'quality': {'resolution': 1080}},
            'releaseGroup': 'GRP',
        },
    }


def _services(library=None, series=None, episodes=None):
    active = importlib.import_module('core.active')
    K = active.ServiceKind
    return [
        active.ActiveService(K.RADARR, 'http://r', 'k', 'v3', library=library or []),
        active.ActiveService(K.SONARR, 'http://s', 'k', 'v3', library=series or [], episodes=episodes or []),
    ]


def test_process_name_collapses_separators():
    matcher = importlib.import_module('core.matcher')
    assert matcher.process_name('Movie.Title_(2020)-[1080p]') == 'movie title 2020 1080p'


def test_title_words_stop_at_year_and_season_markers():
    matcher = importlib.import_module('core.matcher')
    assert matcher.extract_title_words('Movie.Title.2020.1080p.mkv') == ['movie', 'title']
    assert matcher.extract_title_words('Season 4/The.Show.S04E01.720p.mkv') == ['the', 'show']
    assert matcher.extract_title_words('Some Show - Season 2 Episode 3.mkv') == ['some', 'show']


def test_season_episode_extraction_compact_and_verbose():
    matcher = importlib.import_module('core.matcher')
    assert matcher.extract_season_episode('Show.S04E01.mkv') == (4, 1)
    assert matcher.extract_season_episode('show season 4 episode 1') == (4, 1)
    assert matcher.extract_season_episode('Movie.2020.mkv') is None
    assert matcher.match_season_episode('Show.S04E01.mkv', 'show s04e01 1080p')
    assert matcher.match_season_episode('Show.S04E01.mkv', 'show season 4 episode 1')
    assert not matcher.match_season_episode('Show.S04E01.mkv', 'show s04e02 1080p')


def test_movie_tie_break_takes_most_recent():
    matcher = importlib.import_module('core.matcher')
    torrents = [
        _torrent('Movie.Title.2020.1080p.BluRay-GRP', added_on=100, hash='old'),
        _torrent('Movie Title (2020) 1080p GRP', added_on=200, hash='new'),
    ]
    services, unmatched = matcher.match_library_torrents(_services(library=[_movie()]), torrents)
    movie = services[0].library[0]
    assert movie['torrent'] is True
    assert movie['torrentType'] == 'Movie'
    assert movie['torrentFile']['hash'] == 'new'
    assert [t.hash for t in unmatched] == ['old']


def test_matching_is_deterministic():
    matcher = importlib.import_module('core.matcher')
    torrents = [
        _torrent('Movie.Title.2020.1080p.BluRay-GRP', added_on=100, hash='a'),
        _torrent('Movie.Title.2020.1080p.WEB-GRP', added_on=100, hash='b'),
    ]
    first, _ = matcher.match_library_torrents(_services(library=[_movie()]), torrents)
    second, _ = matcher.match_library_torrents(_services(library=[_movie()]), torrents)
    assert first[0].library[0]['torrentFile']['hash'] == second[0].library[0]['torrentFile']['hash']


def test_movie_needs_year_in_torrent_name():
    matcher = importlib.import_module('core.matcher')
    torrents = [_torrent('Movie.Title.1999.1080p.BluRay-GRP')]
    services, unmatched = matcher.match_library_torrents(_services(library=[_movie()]), torrents)
    assert 'torrent' not in services[0].library[0]
    assert len(unmatched) == 1


def test_items_without_files_are_untouched():
    matcher = importlib.import_module('core.matcher')
    movie = _movie(has_file=False)
    services, unmatched = matcher.match_library_torrents(
        _services(library=[movie]), [_torrent('Movie.Title.2020.1080p-GRP')]
    )
    assert services[0].library[0] == movie
    assert len(unmatched) == 1


def test_episode_match_prefers_exact_episode_torrent():
    matcher = importlib.import_module('core.matcher')
    series = [{'id': 10, 'title': 'The Show', 'seasons': [{'seasonNumber': 4}]}]
    episodes = [_episode(100, 4, 1, 'The.Show.S04E01.1080p.WEB-GRP.mkv')]
    torrents = [
        _torrent('The.Show.S04E01.1080p.WEB-GRP', hash='ep'),
        _torrent('The.Show.S04.1080p.WEB-GRP', hash='pack'),
    ]
    services, unmatched = matcher.match_library_torrents(_services(series=series, episodes=episodes), torrents)
    sonarr = services[1]
    assert sonarr.episodes[0]['torrentType'] == 'Episode'
    assert sonarr.episodes[0]['torrentFile']['hash'] == 'ep'
    assert [t.hash for t in unmatched] == ['pack']
    season = sonarr.library[0]['seasons'][0]
    assert season['torrentsPresent'] is True
    assert sonarr.library[0]['torrentsPresent'] is True
    assert season['seasonTorrent'] is None


def test_episode_tie_break_takes_most_recent():
    matcher = importlib.import_module('core.matcher')
    series = [{'id': 10, 'title': 'The Show', 'seasons': [{'seasonNumber': 4}]}]
    episodes = [_episode(100, 4, 1, 'The.Show.S04E01.1080p.WEB-GRP.mkv')]
    torrents = [
        _torrent('The.Show.S04E01.1080p.WEB-GRP', added_on=100, hash='first'),
        _torrent('The Show S04E01 1080p WEB GRP REPACK', added_on=200, hash='second'),
    ]
    services, unmatched = matcher.match_library_torrents(_services(series=series, episodes=episodes), torrents)
    assert services[1].episodes[0]['torrentFile']['hash'] == 'second'
    assert [t.hash for t in unmatched] == ['first']


def test_season_pack_matches_every_episode():
    matcher = importlib.import_module('core.matcher')
    series = [{'id': 10, 'title': 'The Show', 'seasons': [{'seasonNumber': 4}, {'seasonNumber': 5}]}]
    episodes = [
        _episode(101, 4, 1, 'The.Show.S04E01.1080p.WEB-GRP.mkv'),
        _episode(102, 4, 2, 'The.Show.S04E02.1080p.WEB-GRP.mkv'),
    ]
    torrents = [_torrent('The.Show.S04.1080p.WEB-GRP', hash='pack')]
    services, unmatched = matcher.match_library_torrents(_services(series=series, episodes=episodes), torrents)
    sonarr = services[1]
    assert all(e['torrentType'] == 'Series' for e in sonarr.episodes)
    assert unmatched == []
    seasons = sonarr.library[0]['seasons']
    assert seasons[0]['seasonTorrent']['hash'] == 'pack'
    assert [e['id'] for e in seasons[0]['episodes']] == [101, 102]
    assert seasons[1]['torrentsPresent'] is False


def test_inputs_are_not_mutated():
    matcher = importlib.import_module('core.matcher')
    movie = _movie()
    before = dict(movie)
    services = _services(library=[movie])
    matcher.match_library_torrents(services, [_torrent('Movie.Title.2020.1080p-GRP')])
    assert movie == before
    assert services[0].library == [movie]


def test_seed_and_download_checks():
    matcher = importlib.import_module('core.matcher')
    done = _torrent('x', state='stalledUP', ratio=2.5, ratio_limit=2.0, seeding_time=5000 * 60, seeding_time_limit=4320)
    short = _torrent('y', state='uploading', ratio=2.5, ratio_limit=2.0, seeding_time=1000, seeding_time_limit=4320)
    low = _torrent('z', state='downloading', ratio=0.1, ratio_limit=2.0)
    assert matcher.torrent_seed_check(done) is True
    assert matcher.torrent_seed_check(short) is False
    assert matcher.seed_check_reason(short) == 'time'
    assert matcher.seed_check_reason(low) == 'ratio'
    assert matcher.torrent_downloaded_check(done) is True
    assert matcher.torrent_downloaded_check(low) is False


def test_torrent_from_api_and_dict():
    matcher = importlib.import_module('core.matcher')
    t = matcher.Torrent.from_api({'hash': 'h', 'name': 'A.B', 'ratio': 1.5, 'seeding_time_limit': -2, 'added_on': 7})
    assert t.processed_name == 'a b'
    assert t.seeding_time_limit == -2.0
    again = matcher.Torrent.from_dict({**t.to_dict(), 'torrentType': 'Movie'})
    assert again == t


def test_seed_check_resolves_qbittorrent_limit_sentinels(caplog):
    matcher = importlib.import_module('core.matcher')
    seeded = dict(state='stalledUP', ratio=5.0, seeding_time=10000 * 60)
    unlimited_ratio = _torrent('a', ratio_limit=-1, seeding_time_limit=60, **seeded)
    unlimited_time = _torrent('b', ratio_limit=1.0, seeding_time_limit=-1, **seeded)
    global_met = _torrent('c', ratio_limit=-2, seeding_time_limit=-2, max_ratio=2.0, max_seeding_time=4320, **seeded)
    global_high = _torrent('d', ratio_limit=-2, seeding_time_limit=60, max_ratio=10.0, **seeded)
    global_unlimited = _torrent('e', ratio_limit=1.0, seeding_time_limit=-2, max_seeding_time=-1, **seeded)

    with caplog.at_level(logging.INFO):
        assert matcher.torrent_seed_check(unlimited_ratio) is False
    assert 'ratio: 5.00/unlimited' in caplog.text
    assert matcher.seed_check_reason(unlimited_ratio) == 'ratio'
    assert matcher.torrent_seed_check(unlimited_time) is False
    assert matcher.seed_check_reason(unlimited_time) == 'time'
    assert matcher.torrent_seed_check(global_met) is True
    assert matcher.torrent_seed_check(global_high) is False
    assert matcher.seed_check_reason(global_high) == 'ratio'
    assert matcher.torrent_seed_check(global_unlimited) is False

    t = matcher.Torrent.from_api({'hash': 'h', 'name': 'n', 'ratio_limit': -2, 'max_ratio': 1.5})
    assert matcher.effective_limits(t) == (1.5, 0.0)
