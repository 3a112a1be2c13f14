"""Transcoding module for HLS video encoding and publishing.

Converts uploaded videos into adaptive-bitrate HLS playlists with a single
multiplexed FFmpeg pass, publishes the output to local or S3 storage and
tracks every job through the PENDING, PROCESSING, COMPLETED and FAILED states.
"""
