"""Tests for TileUrlBuilder."""

from domain.models import TileKey
from tiles.urls import TileUrlBuilder


class TestTileUrlBuilder:
    """Tests for URL templating and mirror rotation."""

    def test_default_template(self):
        builder = TileUrlBuilder()
        url = builder.build(TileKey(x=3, y=5, z=7))
        assert url == 'https://a.tile.openstreetmap.org/7/3/5.png'

    def test_round_robin_cycles_mirrors(self):
        builder = TileUrlBuilder()
        key = TileKey(x=0, y=0, z=0)
        hosts = [builder.build(key).split('.')[0] for _ in range(4)]
        assert hosts == ['https://a', 'https://b', 'https://c', 'https://a']

    def test_template_without_server(self):
        builder = TileUrlBuilder('http://tiles.local/{z}/{x}/{y}.png', ['x', 'y'])
        assert builder.build(TileKey(1, 2, 3)) == 'http://tiles.local/3/1/2.png'
        # Индекс зеркала не сдвигается
        assert builder._index == 0

    def test_set_template_resets_rotation(self):
        builder = TileUrlBuilder()
        builder.build(TileKey(0, 0, 0))
        builder.set_template('https://{server}.example.com/{z}/{x}/{y}.jpg', ['m1', 'm2'])
        assert builder.build(TileKey(1, 1, 1)) == 'https://m1.example.com/1/1/1.jpg'
        assert builder.build(TileKey(1, 1, 1)) == 'https://m2.example.com/1/1/1.jpg'

    def test_set_template_keeps_servers_when_omitted(self):
        builder = TileUrlBuilder(servers=['q'])
        builder.set_template('https://{server}.other/{z}/{x}/{y}')
        assert builder.build(TileKey(0, 0, 0)) == 'https://q.other/0/0/0'

    def test_empty_servers_fall_back_to_defaults(self):
        builder = TileUrlBuilder(servers=[])
        assert builder.servers == ('a', 'b', 'c')
