# Font candidates for overlay text (macOS/Windows/Linux). First loadable entry wins.
FONT_LIST = [
    # macOS
    "/System/Library/Fonts/Helvetica.ttc",
    "/System/Library/Fonts/Supplemental/Arial.ttf",
    "/Library/Fonts/Arial Unicode.ttf",
    # Windows
    "C:\\Windows\\Fonts\\segoeui.ttf",
    "C:\\Windows\\Fonts\\arial.ttf",
    # Linux
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/usr/share/fonts/truetype/noto/NotoSans-Regular.ttf",
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
]

# Detection loop cadence (seconds between timer firings).
POLL_INTERVAL_SECONDS = 0.1

# Keypoints below this score are treated as absent by the pose provider and the overlay.
MIN_KEYPOINT_CONFIDENCE = 0.5

# Maximum number of entries kept by the history aggregator.
HISTORY_CAPACITY = 10

# Default Ultralytics pose weights.
POSE_MODEL_WEIGHTS = "yolo11n-pose.pt"
