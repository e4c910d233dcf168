import copy
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1] / 'src'))

from riskmap import join  # noqa: E402

POLYGON = {
    'type': 'Polygon',
    'coordinates': [[[32.8, 39.9], [32.9, 39.9], [32.9, 40.0], [32.8, 40.0], [32.8, 39.9]]],
}


def _feature(geometry=POLYGON, **props):
    return {'type': 'Feature', 'geometry': geometry, 'properties': props}


def _collection(*features):
    return {'type': 'FeatureCollection', 'features': list(features)}


def test_normalize_key_text_folds_turkish_casing():
    assert join.normalize_key_text('İSTANBUL') == join.normalize_key_text('istanbul') == 'istanbul'
    assert join.normalize_key_text('IŞIK') == join.normalize_key_text('ışık') == join.normalize_key_text('isik')
    assert join.normalize_key_text('  Çankaya   Merkez ') == 'cankaya merkez'
    assert join.normalize_key_text('Göztepe') == join.normalize_key_text('GOZTEPE')
    assert join.normalize_key_text('Üsküdar') == 'uskudar'
    assert join.normalize_key_text('Eyüpsultan\tMerkez') == 'eyupsultan merkez'
    assert join.normalize_key_text(None) == ''
    assert join.normalize_key_text(float('nan')) == ''


def test_make_join_key_combines_normalized_parts():
    assert join.make_join_key('Ankara', 'ÇANKAYA', 'Kızılay') == 'ankara|cankaya|kizilay'
    assert join.make_join_key(None, 'Kadıköy', None) == '|kadikoy|'


def test_join_merges_rows_by_identifier():
    features = _collection(_feature(mah_id='A1', mahalle_adi='Kızılay'))

    joined = join.join_rows_to_features(features, [{'mah_id': 'A1', 'risk_score': 0.5}])

    assert joined['type'] == 'FeatureCollection'
    assert len(joined['features']) == 1
    assert joined['features'][0]['properties']['risk_score'] == 0.5
    assert joined['features'][0]['geometry'] == POLYGON


def test_join_reads_top_level_feature_ids():
    feature = {'type': 'Feature', 'id': 'A1', 'geometry': POLYGON, 'properties': {}}

    joined = join.join_rows_to_features([feature], [{'id': 'A1', 'risk_score': 0.5}])

    assert joined['features'][0]['properties']['risk_score'] == 0.5


def test_join_passes_unmatched_features_through():
    features = _collection(_feature(mah_id='B2'))

    joined = join.join_rows_to_features(features, [{'mah_id': 'A1', 'risk_score': 0.9}])

    assert len(joined['features']) == 1
    assert 'risk_score' not in joined['features'][0]['properties']


def test_join_tolerates_missing_rows():
    features = _collection(_feature(mah_id='B2'))

    assert join.join_rows_to_features(features, None)['features'] == features['features']
    assert join.join_rows_to_features(features, [])['features'] == features['features']


def test_join_matches_float_ids_from_csv():
    joined = join.join_rows_to_features(_collection(_feature(mah_id='101')), [{'mah_id': 101.0, 'vs30_mean': 410}])

    assert joined['features'][0]['properties']['vs30_mean'] == 410


def test_join_falls_back_to_district_and_neighborhood_names():
    features = _collection(_feature(city='Ankara', ilce_adi='Çankaya', mahalle_adi='Kızılay'))
    rows = [{'ilce_adi': 'ÇANKAYA', 'mahalle_adi': 'KIZILAY', 'risk_score': 0.31}]

    joined = join.join_rows_to_features(features, rows)

    assert joined['features'][0]['properties']['risk_score'] == 0.31
    assert joined['features'][0]['properties']['city'] == 'Ankara'


def test_join_scopes_identifiers_by_city():
    features = _collection(_feature(city='Istanbul', mah_id=7), _feature(city='Ankara', mah_id=7))
    rows = [
        {'city': 'İstanbul', 'mah_id': 7, 'risk_score': 0.2},
        {'city': 'Ankara', 'mah_id': 7, 'risk_score': 0.4},
    ]

    joined = join.join_rows_to_features(features, rows)

    assert [f['properties']['risk_score'] for f in joined['features']] == [0.2, 0.4]


def test_join_row_values_win_on_collision():
    features = _collection(_feature(mah_id='A1', toplam_nufus=100, source='boundary'))

    joined = join.join_rows_to_features(features, [{'mah_id': 'A1', 'toplam_nufus': 250}])

    props = joined['features'][0]['properties']
    assert props['toplam_nufus'] == 250
    assert props['source'] == 'boundary'


def test_join_duplicate_rows_last_write_wins():
    rows = [
        {'mah_id': 'A1', 'risk_score': 0.1, 'year': 2025},
        {'mah_id': 'A1', 'risk_score': 0.3, 'year': 2025},
    ]

    joined = join.join_rows_to_features(_collection(_feature(mah_id='A1')), rows)

    assert joined['features'][0]['properties']['risk_score'] == 0.3


def test_join_never_crosses_cities_on_shared_identifiers():
    features = _collection(
        _feature(city='Istanbul', mah_id=7, ilce_adi='Merkez', mahalle_adi='Cumhuriyet'),
    )
    rows = [{'city': 'Ankara', 'mah_id': 7, 'ilce_adi': 'Merkez', 'mahalle_adi': 'Cumhuriyet', 'risk_score': 0.9}]

    joined, summary = join.match_rows(features, rows)

    assert joined[0]['properties'] == {'city': 'Istanbul', 'mah_id': 7, 'ilce_adi': 'Merkez', 'mahalle_adi': 'Cumhuriyet'}
    assert summary == {'matched': 0, 'unmatched': 1, 'orphans': 1}


def test_join_city_less_rows_still_match_by_identifier():
    features = _collection(_feature(city='Istanbul', mah_id=7), _feature(mah_id=8))
    rows = [
        {'city': 'Ankara', 'mah_id': 7, 'risk_score': 0.9},
        {'mah_id': 7, 'risk_score': 0.2},
        {'city': 'Ankara', 'mah_id': 8, 'risk_score': 0.6},
    ]

    joined = join.join_rows_to_features(features, rows)

    first, second = [f['properties'] for f in joined['features']]
    assert (first['city'], first['risk_score']) == ('Istanbul', 0.2)
    assert second['risk_score'] == 0.6


def test_join_harmonizes_percentage_risk_scores():
    joined = join.join_rows_to_features(_collection(_feature(mah_id='A1')), [{'mah_id': 'A1', 'risk_score': 45}])

    assert joined['features'][0]['properties']['risk_score'] == pytest.approx(0.45)


def test_harmonize_scale_decides_per_column():
    rows = [{'risk_score': 1, 'ml_risk_score': 0.3}, {'risk_score': 50, 'ml_risk_score': 0.8}, {'risk_score': None}]

    harmonized = join.harmonize_scale(rows)

    assert [row['risk_score'] for row in harmonized] == [pytest.approx(0.01), pytest.approx(0.5), None]
    assert [row.get('ml_risk_score') for row in harmonized] == [0.3, 0.8, None]
    assert rows[0]['risk_score'] == 1
    assert join.harmonize_scale([{'risk_score': 0.45}, {'risk_score': 1.0}]) == [{'risk_score': 0.45}, {'risk_score': 1.0}]
    assert join.harmonize_scale([{'risk_score': 640}, {'risk_score': 12}]) == [{'risk_score': 640}, {'risk_score': 12}]
    assert join.harmonize_scale(None) == []


def test_join_keeps_percentage_order_across_one_percent():
    features = _collection(_feature(mah_id='A1'), _feature(mah_id='B2'))
    rows = [{'mah_id': 'A1', 'risk_score': 1}, {'mah_id': 'B2', 'risk_score': 50}]

    joined = join.join_rows_to_features(features, rows)

    low, high = [f['properties']['risk_score'] for f in joined['features']]
    assert low == pytest.approx(0.01)
    assert high == pytest.approx(0.5)


def test_join_is_idempotent_and_leaves_inputs_untouched():
    features = _collection(_feature(mah_id='A1'), _feature(mah_id='B2'))
    rows = [{'mah_id': 'A1', 'risk_score': 52, 'lon': 32.85, 'lat': 39.95}]
    features_before = copy.deepcopy(features)
    rows_before = copy.deepcopy(rows)

    first = join.join_rows_to_features(features, rows)
    second = join.join_rows_to_features(features, rows)

    assert first == second
    assert features == features_before
    assert rows == rows_before


def test_match_rows_reports_counts():
    features = _collection(_feature(mah_id='A1'), _feature(mah_id='B2'))
    rows = [{'mah_id': 'A1'}, {'mah_id': 'C3'}, {'mah_id': 'D4'}]

    _, summary = join.match_rows(features, rows)

    assert summary == {'matched': 1, 'unmatched': 1, 'orphans': 2}


def test_extract_point_samples_from_features():
    features = _collection(
        _feature(mah_id='A1', ilce_adi='Çankaya', toplam_nufus='1200', risk_score=0.4),
        _feature(geometry=None, mah_id='B2', lon=32.7, lat=39.8),
        _feature(geometry=None, mah_id='C3'),
    )

    samples = join.extract_point_samples([], features)

    assert [sample['mah_id'] for sample in samples] == ['A1', 'B2']
    first = samples[0]
    assert first['district'] == 'Çankaya'
    assert first['population'] == 1200.0
    assert first['lon'] == pytest.approx(32.84)
    assert first['lat'] == pytest.approx(39.94)
    assert samples[1]['lon'] == 32.7


def test_extract_point_samples_from_rows_without_geometry():
    rows = [
        {'mah_id': 1, 'lon': 29.0, 'lat': 41.0, 'risk_score': 35, 'year': 2026},
        {'mah_id': 2, 'lon': None, 'lat': 41.0},
    ]

    samples = join.extract_point_samples(rows)

    assert len(samples) == 1
    assert samples[0]['risk_score'] == pytest.approx(0.35)
    assert samples[0]['year'] == 2026.0


def test_normalize_properties_reads_aliases():
    record = join.normalize_properties({'il': 'Ankara', 'ilce': 'Keçiören', 'Name': 'Bağlarbaşı', 'vs30': '380'})

    assert record['city'] == 'Ankara'
    assert record['district'] == 'Keçiören'
    assert record['neighborhood'] == 'Bağlarbaşı'
    assert record['vs30_mean'] == 380.0
    assert record['risk_score'] is None
    assert join.normalize_properties(None) == {}


def test_city_from_path():
    assert join.city_from_path('data/boundaries/ankara_neighborhoods.geojson') == 'Ankara'
    assert join.city_from_path('/data/Istanbul_mahalle_risk.geojson') == 'Istanbul'
    assert join.city_from_path('data/risk/2025.csv') is None


def test_available_districts_sorted_turkish_aware():
    features = _collection(
        _feature(city='Istanbul', ilce_adi='Üsküdar'),
        _feature(city='Ankara', ilce_adi='Çankaya'),
        _feature(city='Istanbul', ilce_adi='Beşiktaş'),
        _feature(city='Ankara', ilce_adi='Çankaya'),
        _feature(ilce_adi='Orphan'),
    )

    districts = join.available_districts(features)

    assert [d['name'] for d in districts] == ['Beşiktaş', 'Çankaya', 'Üsküdar']
    assert districts[1]['city'] == 'Ankara'


def test_filters_are_case_and_locale_insensitive():
    features = _collection(
        _feature(city='Istanbul', ilce_adi='Kadıköy'),
        _feature(city='Ankara', ilce_adi='Çankaya'),
    )

    assert len(join.filter_by_city(features, ['İSTANBUL'])['features']) == 1
    assert len(join.filter_by_districts(features, ['ÇANKAYA', 'kadikoy'])['features']) == 2
    assert join.filter_by_city(features, []) is features
    assert join.filter_by_districts(None, ['x']) is None
