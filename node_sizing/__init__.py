"""Node specific sizing: resize pod resources after the node they are pinned to."""
