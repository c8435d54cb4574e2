# zbplugins

The logic behind a set of chat-bot plugins. It is plain Python functions and
classes, so any bot framework can call it and pass the results to the chat.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

Two features start external programs, which must be on `PATH`:

- `timidity` renders MIDI to WAV (`zbplugins.midi.render_wav`).
- `ffmpeg` cuts three ten-second clips for the song-guessing game
  (`zbplugins.guessmusic.cut_music`).

## Modules

- `zbplugins.timer_model`: `Timer` packs an enabled flag, month, day,
  weekday (Sunday is 0), hour and minute into one integer. A field of -1
  means "every". `get_filled_timer` builds a timer from the regex groups
  month, day or weekday, hour, minute, image URL and alert text. These may
  be written in Chinese numerals (`十二`, `每周五`) or digits. Invalid input
  gives a disabled timer whose `alert` says why. `get_filled_cron_timer`
  builds a timer from a cron expression. `Timer.timer_id()` is derived from
  `Timer.info()`.
- `zbplugins.wake`: `next_wake_time(timer, now)` gives the next moment a
  packed-schedule timer should wake. `is_due(timer, now)` tells whether it
  fires at `now`. `first_week(date, week)` finds the first given weekday of
  a month.
- `zbplugins.clock`: `Clock(db_path, sender)` keeps timers in SQLite and
  runs each one on a background thread. At start it reloads the stored
  timers. When a timer fires it calls `sender(self_id, group_id, text)`,
  where `text` comes from `render_alert`: an at-all CQ code, the alert and
  the image if any. `register_timer`, `cancel_timer` and `list_timers` add,
  remove and list timers. `close()` (or a `with` block) stops the timers.
  `CronSchedule` understands five-field cron specs, `@daily`-style
  descriptors and `@every <duration>`.
- `zbplugins.midi`: `make_midi` and `write_midi` turn note text such as
  `CCGGAAGR FFEEDDCR` into a MIDI file. A note is a letter, an optional
  `b`/`#`, an octave and a `<n` length; `R` is a rest. Bad input raises
  `MidiParseError`. `midi_to_text` turns a track back into note text.
  `check_timbre` validates a program number. `EarTrainingGame` runs five
  rounds of naming a played note, in personal or team mode, and keeps
  scores.
- `zbplugins.manager`: group-management helpers. `ban_minutes` works out
  ban lengths, capped at 43199 minutes. `welcome_to_cq` expands welcome and
  farewell templates. `unescape_brackets` restores CQ codes. `pick_lucky`
  picks among the ten most recent speakers. `toggle_option` flips option
  bits. `parse_join_comment`, `gist_url` and `check_new_user` verify join
  requests against a gist that holds a recent Unix timestamp.
  `ManagerStore` keeps welcome and farewell texts and verified members in
  SQLite.
- `zbplugins.guessmusic`: `GuessConfig` loads and saves the JSON settings.
  `music_lottery` draws a song from the local library or the web APIs.
  `fetch_api_music`, `fetch_paugram`, `fetch_anime` and `fetch_netease`
  download songs. `GuessGame` judges answers, hints and time-outs.
- `zbplugins.moyu`: `Holiday` countdowns, `parse_holiday` for
  `days_year_month_day` values, `weekend` and the daily `moyu_message`.
- `zbplugins.nsfw`: turns a `Classification` of scores into a verdict
  (`judge`, `auto_judge`).
- `zbplugins.hyaku`: `load_poems` reads the hundred poems from a CSV file
  into `Poem` records. `image_urls` gives a poem's picture URLs.
- `zbplugins.imagefinder`: `search_illusts` searches illustrations by
  keyword. `parse_search`, `format_illust`, `format_tags` and
  `clean_description` turn the results into message text.
- `zbplugins.nativesetu`: `SetuLibrary` indexes local image folders, one
  class per folder, keyed by `difference_hash`. It picks a random picture
  of a class and summarises the class counts.

## Example

```python
from datetime import datetime

from zbplugins.timer_model import get_filled_timer
from zbplugins.wake import next_wake_time

timer = get_filled_timer(["", "12", "25日", "8", "30", "", "Merry Christmas"], 0, 0, False)
print(timer.info())
print(next_wake_time(timer, datetime.now()))
```

## What the package does not do

- It does not connect to a chat platform and has no chat commands.
  Receiving messages, matching commands, checking permissions and sending
  replies are left to the calling bot.
- It does not fetch holiday dates from anywhere. You pass `Holiday`
  objects, or values for `parse_holiday`, to `moyu_message`.
- It has no image classifier. `zbplugins.nsfw` only words the scores you
  give it.
- It does not download the poem CSV or illustration images. It only builds
  their URLs.