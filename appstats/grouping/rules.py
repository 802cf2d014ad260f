"""
Built-in grouping rules.

KNOWN_APP_RULES is checked before any fuzzy matching; order matters,
the first entry with a matching pattern wins.
"""
import re
from typing import List, Pattern, Tuple

KnownAppRule = Tuple[str, List[Pattern[str]]]


def _rule(group_name: str, *patterns: str) -> KnownAppRule:
    return (group_name, [re.compile(p, re.IGNORECASE) for p in patterns])


KNOWN_APP_RULES: List[KnownAppRule] = [
    _rule("Blender", r"^blender"),
    _rule("VS Code", r"^code$", r"^code - insiders", r"^vscodium", r"^code\.exe$"),
    _rule("Google Chrome", r"^chrome\.exe$", r"^chrome$", r"^chromium", r"^google-chrome"),
    _rule("Firefox", r"^firefox"),
    _rule("Microsoft Edge", r"^msedge", r"^microsoftedge"),
    _rule("Discord", r"^discord"),
    _rule("Slack", r"^slack"),
    _rule("Spotify", r"^spotify"),
    _rule("Steam", r"^steam\.exe$", r"^steam$", r"^steamwebhelper"),
    _rule("Epic Games", r"^epicgameslauncher", r"^unrealengine"),
    _rule("OBS Studio", r"^obs64", r"^obs32", r"^obs\.exe$", r"^obs$"),
    _rule("Adobe Photoshop", r"^photoshop"),
    _rule("Adobe Premiere", r"^premiere", r"^adobepremiere"),
    _rule("Adobe After Effects", r"^afterfx", r"^after effects"),
    _rule("Adobe Illustrator", r"^illustrator"),
    _rule("DaVinci Resolve", r"^davinci", r"^resolve"),
    _rule("Unity", r"^unity(hub)?"),
    _rule("Unreal Engine", r"^ue4editor", r"^ue5editor"),
    _rule("Figma", r"^figma"),
    _rule("Notion", r"^notion"),
    _rule("Obsidian", r"^obsidian"),
    _rule("VLC", r"^vlc"),
    _rule("Windows Explorer", r"^explorer\.exe$"),
    _rule("Task Manager", r"^taskmgr"),
    _rule("PowerShell", r"^powershell", r"^pwsh"),
    _rule("Command Prompt", r"^cmd\.exe$"),
    _rule("Windows Terminal", r"^windowsterminal", r"^wt\.exe$"),
    _rule("Notepad", r"^notepad"),
    _rule("Microsoft Word", r"^winword"),
    _rule("Microsoft Excel", r"^excel"),
    _rule("Microsoft PowerPoint", r"^powerpnt"),
    _rule("Zoom", r"^zoom"),
    _rule("Teams", r"^teams"),
    _rule("Rider", r"^rider"),
    _rule("CLion", r"^clion"),
    _rule("PyCharm", r"^pycharm"),
    _rule("IntelliJ IDEA", r"^idea"),
    _rule("WebStorm", r"^webstorm"),
    _rule("Godot", r"^godot"),
    _rule("Krita", r"^krita"),
    _rule("GIMP", r"^gimp"),
    _rule("Audacity", r"^audacity"),
    _rule("VirtualBox", r"^virtualbox", r"^vboxmanage"),
    _rule("VMware", r"^vmware"),
    _rule("Git", r"^git\.exe$", r"^git-bash"),
]

# Applied in order to strip version, architecture, year and installer suffixes
VERSION_SUFFIX_PATTERNS: List[Pattern[str]] = [
    re.compile(r"[\s\-_v](\d+[.\d]*)(\s*(alpha|beta|rc|lts|stable|preview))?$", re.IGNORECASE),
    re.compile(r"\s+\d{4}$"),  # "App 2024"
    re.compile(r"[\s\-_](x64|x86|64[\-_]?bit|32[\-_]?bit)$", re.IGNORECASE),
    re.compile(r"\s+\(64[\-_]?bit\)$", re.IGNORECASE),
    re.compile(r"[\s\-_](installer|setup|portable)$", re.IGNORECASE),
]

EXE_SUFFIX = re.compile(r"\.exe$", re.IGNORECASE)
NAME_SEPARATORS = re.compile(r"[\s\-_]")
NON_ALNUM = re.compile(r"[^a-z0-9]")


def strip_exe_suffix(name: str) -> str:
    return EXE_SUFFIX.sub("", name)


def strip_version_suffixes(name: str) -> str:
    """Remove trailing version-like decorations, then trim."""
    result = name
    for pattern in VERSION_SUFFIX_PATTERNS:
        result = pattern.sub("", result)
    return result.strip()


def title_case_family(candidate: str) -> str:
    """'my-tool' -> 'My Tool'."""
    words = [w for w in NAME_SEPARATORS.split(candidate) if w]
    return " ".join(w[:1].upper() + w[1:] for w in words)


def normalize_catalog_name(name: str) -> str:
    """Lowercase and drop everything but letters and digits."""
    return NON_ALNUM.sub("", name.lower())


def derive_display_name(exe_name: str) -> str:
    """'obs-studio.exe' -> 'Obs Studio'."""
    base = strip_exe_suffix(exe_name).replace("-", " ").replace("_", " ")
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), base)
