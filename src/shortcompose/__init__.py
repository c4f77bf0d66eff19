"""shortcompose — generated-clip short video pipeline.

Send content segments to a generative-video service, render text cards
for each segment, and composite clips, cards, subtitles and background
music into one vertical video. Runs are declared in YAML job manifests.
"""

__version__ = "0.1.0"
