# Utility for consistent progress bars across the migrator and verifier
from tqdm import tqdm
from typing import Callable, Iterable, Optional


def progress_bar_iter(iterable: Iterable, total: Optional[int] = None, desc: str = "",
                      get_desc: Optional[Callable] = None, enabled: bool = True):
    """
    Wrap an iterable with a tqdm progress bar, optionally updating the description with get_desc(item).
    Args:
        iterable: The iterable to wrap
        total: Total number of items (if known)
        desc: Static description (e.g., entity family)
        get_desc: Function to get dynamic description from current item
        enabled: When False, items are yielded without drawing a bar
    Returns:
        A generator that yields items from the iterable
    """
    if not enabled:
        yield from iterable
        return

    bar = tqdm(iterable, total=total, desc=desc, ncols=100, leave=False,
               bar_format='{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]')
    try:
        for item in bar:
            if get_desc:
                bar.set_description(f"{desc}: {get_desc(item)}")
            yield item
    finally:
        bar.close()
