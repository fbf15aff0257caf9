"""Video transcode-and-publish pipeline."""
