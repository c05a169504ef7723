from whatsapp_api.qr import render_qr_png


def test_render_qr_png():
    png = render_qr_png("2@Zm9vYmFy,c2VjcmV0,a2V5,MQ==")
    assert png.startswith(b"\x89PNG\r\n\x1a\n")
    assert len(png) > 100
