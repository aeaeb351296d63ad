"""
Tests for the image probe.
HEAD/GET decisions, signature sniffing, caching and the broken list.
"""
import requests
from unittest.mock import MagicMock, patch


def _response(status=200, content_type='', body=b''):
    response = MagicMock()
    response.status_code = status
    response.headers = {'Content-Type': content_type}
    response.iter_content.return_value = iter([body])
    return response


def _session(head=None, get=None):
    session = MagicMock()
    if isinstance(head, Exception):
        session.head.side_effect = head
    else:
        session.head.return_value = head or _response(405)
    if isinstance(get, Exception):
        session.get.side_effect = get
    else:
        session.get.return_value = get or _response(404)
    return session


URL = 'https://images.example.com/A100.jpg'


class TestLooksLikeImage:
    """Signature sniffing."""

    def test_known_signatures(self):
        from wheelfeed.services.image_probe import looks_like_image

        assert looks_like_image(b'\xff\xd8\xff\xe0rest')
        assert looks_like_image(b'\x89PNG\r\n\x1a\nrest')
        assert looks_like_image(b'GIF89a...')
        assert looks_like_image(b'RIFF\x00\x00\x00\x00WEBPVP8 ')
        assert looks_like_image(b'  <svg xmlns="http://www.w3.org/2000/svg">')
        assert looks_like_image(b'<?xml version="1.0"?><svg>')

    def test_html_is_not_an_image(self):
        from wheelfeed.services.image_probe import looks_like_image

        assert not looks_like_image(b'<!DOCTYPE html><html>')
        assert not looks_like_image(b'')


class TestProbe:
    """Network decisions, with requests mocked."""

    def test_head_image_content_type(self, memory_store):
        """A HEAD 200 with image/* is valid without a GET."""
        from wheelfeed.services.image_probe import ImageProbe

        session = _session(head=_response(200, 'image/jpeg'))
        probe = ImageProbe(memory_store)
        with patch.object(ImageProbe, '_http_session', return_value=session):
            assert probe.probe(URL) is True
        session.get.assert_not_called()
        session.close.assert_called_once()

    def test_falls_back_to_range_get(self, memory_store):
        """HEAD rejected, GET returns PNG bytes with a generic type."""
        from wheelfeed.services.image_probe import ImageProbe

        session = _session(
            head=_response(405),
            get=_response(206, 'application/octet-stream', b'\x89PNG\r\n\x1a\n0000'),
        )
        probe = ImageProbe(memory_store)
        with patch.object(ImageProbe, '_http_session', return_value=session):
            assert probe.probe(URL) is True
        assert session.get.call_args.kwargs['headers'] == {'Range': 'bytes=0-1023'}

    def test_html_page_is_invalid(self, memory_store):
        """A 200 HTML error page is not an image."""
        from wheelfeed.services.image_probe import ImageProbe

        session = _session(head=_response(200, 'text/html'),
                           get=_response(200, 'text/html', b'<html>not found</html>'))
        probe = ImageProbe(memory_store)
        with patch.object(ImageProbe, '_http_session', return_value=session):
            assert probe.probe(URL) is False

    def test_network_errors_are_invalid(self, memory_store):
        """Timeouts never raise out of the probe."""
        from wheelfeed.services.image_probe import ImageProbe

        session = _session(head=requests.Timeout('slow'), get=requests.ConnectionError('down'))
        probe = ImageProbe(memory_store)
        with patch.object(ImageProbe, '_http_session', return_value=session):
            assert probe.probe(URL) is False


class TestCheck:
    """Cached checks and the broken image list."""

    def test_malformed_url_skips_network(self, memory_store):
        """Empty and non-http URLs are invalid without a request."""
        from wheelfeed.services.image_probe import ImageProbe

        probe = ImageProbe(memory_store)
        with patch.object(ImageProbe, 'probe') as mock_probe:
            assert probe.check('') is False
            assert probe.check('ftp://host/a.jpg') is False
            assert probe.check('not a url') is False
        mock_probe.assert_not_called()

    def test_result_is_cached(self, memory_store):
        """The same URL is probed once."""
        from wheelfeed.services.image_probe import ImageProbe

        probe = ImageProbe(memory_store)
        with patch.object(ImageProbe, 'probe', return_value=True) as mock_probe:
            assert probe.check(URL) is True
            assert probe.check(URL) is True
        assert mock_probe.call_count == 1

    def test_invalid_url_added_to_broken_list(self, memory_store):
        """Failed probes are listed for the admin."""
        from wheelfeed.services.image_probe import ImageProbe

        probe = ImageProbe(memory_store)
        with patch.object(ImageProbe, 'probe', return_value=False):
            probe.check(URL)
            probe.check(URL)

        broken = probe.broken_images()
        assert [b['url'] for b in broken] == [URL]

    def test_mark_broken(self, memory_store):
        """A storefront report caches the URL as invalid."""
        from wheelfeed.services.image_probe import ImageProbe

        probe = ImageProbe(memory_store)

        assert probe.mark_broken(URL) is True
        assert probe.cached_result(URL) is False
        assert probe.mark_broken('javascript:alert(1)') is False

    def test_prefetch_probes_in_parallel(self, memory_store):
        """Uncached URLs are probed once each and cached."""
        from wheelfeed.services.image_probe import ImageProbe

        urls = [f'https://images.example.com/{i}.jpg' for i in range(5)]
        probe = ImageProbe(memory_store, workers=3)
        with patch.object(ImageProbe, 'probe', side_effect=lambda url: not url.endswith('3.jpg')):
            probed = probe.prefetch(urls + urls[:2] + [''])

        assert probed == 5
        assert probe.cached_result(urls[0]) is True
        assert probe.cached_result(urls[3]) is False

    def test_prefetch_skips_cached(self, memory_store):
        """Nothing to do when every URL is already known."""
        from wheelfeed.services.image_probe import ImageProbe

        probe = ImageProbe(memory_store, workers=3)
        probe.mark_broken(URL)

        assert probe.prefetch([URL]) == 0
