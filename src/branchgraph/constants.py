"""Tunable defaults shared across branchgraph modules."""

# Layout geometry (pixels)
DEFAULT_NODE_WIDTH = 120
DEFAULT_NODE_HEIGHT = 60
DEFAULT_HORIZONTAL_SPACING = 40
DEFAULT_VERTICAL_SPACING = 100

# Environment overrides for LayoutConfig.from_env()
ENV_NODE_WIDTH = "BRANCHGRAPH_NODE_WIDTH"
ENV_NODE_HEIGHT = "BRANCHGRAPH_NODE_HEIGHT"
ENV_HORIZONTAL_SPACING = "BRANCHGRAPH_HORIZONTAL_SPACING"
ENV_VERTICAL_SPACING = "BRANCHGRAPH_VERTICAL_SPACING"

# Branch naming
MAIN_BRANCH_NAME = "Main"
AUTO_BRANCH_PREFIX = "Branch"
MAX_BRANCH_NAME_LENGTH = 100

# Rendering
SVG_PADDING = 20
LABEL_MAX_CHARS = 24
