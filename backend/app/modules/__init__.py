"""Application modules.

This package contains the feature modules of the HLS transcoder:
- transcoding: Upload intake, HLS encoding pipeline and playback serving
"""
