"""Output rendering for termlink.

Public API:
    Banner -- Shared "banner shown once" handle
    BannerTransform -- Output stage that may prepend the banner
    wrap_streams -- Pair stdout/stderr transforms around one Banner
"""

from termlink.render.banner import Banner, BannerTransform, wrap_streams

__all__ = ["Banner", "BannerTransform", "wrap_streams"]
