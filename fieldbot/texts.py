from __future__ import annotations

from typing import Dict, Literal

Lang = Literal["en", "id"]


# Side menu commands descriptions per language
COMMANDS_DESC: Dict[Lang, Dict[str, str]] = {
    "en": {
        "start": "Start",
        "help": "Help",
        "menu": "Leave the current mode",
        "location": "Location and distance measuring",
        "kml": "Build a KML map",
        "geotags": "Geotag photos",
        "archive": "Zip, extract and search archives",
        "workbook": "Collect photos into sheets",
        "ocr": "Read text from images",
    },
    "id": {
        "start": "Mulai",
        "help": "Bantuan",
        "menu": "Keluar dari mode aktif",
        "location": "Lokasi dan pengukuran jarak",
        "kml": "Membuat peta KML",
        "geotags": "Geotag foto",
        "archive": "Zip, ekstrak dan cari arsip",
        "workbook": "Kumpulkan foto ke sheet",
        "ocr": "Baca teks dari gambar",
    },
}


WELCOME = (
    "Hi {name}! Pick a mode to get started:\n\n"
    "/location - coordinates, addresses and distance measuring\n"
    "/kml - collect points and lines into a KML file\n"
    "/geotags - stamp photos with a location and time\n"
    "/archive - zip, extract and search archives\n"
    "/workbook - collect photos into named sheets\n"
    "/ocr - read text from images\n\n"
    "/menu leaves the current mode, /help shows this list again."
)

MENU = "You left {mode} mode. Pick another one with /help."
MENU_ALREADY = "No mode is active. Pick one with /help."

MODE_MISMATCH = "That command belongs to {expected} mode, but you are in {actual} mode. Send {entry} first."
MODE_MISMATCH_NO_MODE = "No mode is active. Send {entry} first."
NO_MODE_ACTIVE = "No mode is active. Pick one with /help."
STATE_EXPIRED = "Your {mode} session expired after a period of inactivity. Send {entry} to start again."
UNKNOWN_COMMAND = "Unknown command. Type /help for the list of modes."

UNSUPPORTED_EVENT = "That is not something {mode} mode can use right now."
INVALID_INPUT = "⚠️ {detail}"
COLLABORATOR_FAILED = "⚠️ A background service did not respond. Please try again in a moment."
WORKFLOW_RESET = "Something went wrong, so this mode was reset. Please start over."


# ---------------------------------------------------------------------------
# Location / measurement
# ---------------------------------------------------------------------------

LOCATION_INTRO = (
    "🗺️ Location mode\n\n"
    "• /measure - distance and travel time on foot\n"
    "• /measure_motor - the same by motorcycle\n"
    "• /measure_car - the same by car\n"
    "• /cancel - cancel the running measurement\n"
    "• /address <address> - coordinates of an address\n"
    "• /coords <lat> <lon> - address of a coordinate\n"
    "• /show_map <place or lat lon> - map link for a place\n\n"
    "Send a Telegram location or a pair like -7.257056, 112.648000 as the first point.\n"
    "/menu leaves this mode."
)
MEASURE_STARTED = (
    "📏 Measuring ({profile}).\n"
    "Send the first point as a Telegram location or as 'lat, lon'.\n"
    "/cancel stops the measurement."
)
FIRST_POINT_RECEIVED = "📍 First point received:\n{address}\n({coords})\n\nNow send the second point."
MEASUREMENT_RESULT = (
    "📏 Measurement ({profile})\n\n"
    "Start:\n{first_address}\n({first_coords})\n\n"
    "End:\n{second_address}\n({second_coords})\n\n"
    "Distance: {distance}\n"
    "Estimated time: {duration}"
)
MEASURE_CANCELLED = "Measurement cancelled. Send a new first point whenever you like."
NOTHING_TO_CANCEL = "There is no measurement to cancel."
POINT_EXPECTED = "⚠️ {detail}\nSend a Telegram location or coordinates such as -7.6382862, 112.7372882."
ADDRESS_USAGE = "Usage: /address <street, city>"
ADDRESS_NOT_FOUND = "No coordinates found for \"{query}\"."
ADDRESS_FOUND = "📍 {address}\nLatitude: {lat}\nLongitude: {lon}"
COORDS_USAGE = "Usage: /coords <lat> <lon>"
COORDS_FOUND = "📍 ({coords})\n{address}"
SHOW_MAP_USAGE = "Usage: /show_map <lat> <lon> or /show_map <place>"
SHOW_MAP = "🗺️ {label}\n{url}"


# ---------------------------------------------------------------------------
# KML
# ---------------------------------------------------------------------------

KML_INTRO = (
    "📍 KML mode\n\n"
    "Points:\n"
    "• send a location - add a point\n"
    "• /add <lat> <lon> [name] - add a point by text\n"
    "• /addpoint <name> - name the next point\n"
    "• /alwayspoint [name] - default name for points (empty clears it)\n\n"
    "Lines:\n"
    "• /startline [name] - start a line\n"
    "• /endline - save the active line\n"
    "• /cancelline - drop the active line\n\n"
    "Data:\n"
    "• /mydata - show what is stored\n"
    "• /createkml [document name] - build the KML file\n"
    "• /cleardata - delete everything\n\n"
    "/menu leaves this mode."
)
KML_ADD_USAGE = "Usage: /add <lat> <lon> [name]"
KML_ADDPOINT_USAGE = "Usage: /addpoint <name>"
KML_POINT_SAVED = "📍 Point \"{name}\" ({coords}) saved."
KML_LINE_POINT_ADDED = "↪️ Point ({coords}) added to line \"{line}\". {count} points so far."
KML_LINE_NAME_IGNORED = " (The name \"{name}\" is ignored while drawing a line.)"
KML_NEXT_NAME_SET = "📝 The next point will be called \"{name}\"."
KML_ALWAYS_SET = "✅ Points will now be called \"{name}\" by default."
KML_ALWAYS_CLEARED = "🗑️ Default point name \"{name}\" removed."
KML_ALWAYS_NONE = "ℹ️ There is no default point name to remove."
KML_LINE_STARTED = "🏁 Line \"{name}\" started. Send locations to extend it, /endline to save, /cancelline to drop."
KML_LINE_ALREADY_ACTIVE = "⚠️ You are already drawing \"{name}\". Finish it with /endline or drop it with /cancelline."
KML_NO_ACTIVE_LINE = "No line is being drawn. Start one with /startline."
KML_LINE_TOO_SHORT = "⚠️ Line \"{name}\" has {count} point(s); at least 2 are needed. Add more or use /cancelline."
KML_LINE_SAVED = "✅ Line \"{name}\" with {count} points saved."
KML_LINE_CANCELLED = "❌ Line \"{name}\" dropped."
KML_NOTHING_STORED = "You have not stored any points or lines yet."
KML_NOTHING_TO_EXPORT = "There are no points or valid lines to export yet."
KML_CREATED = "KML document \"{name}\" is attached."
KML_CLEARED = "🗑️ All points, lines, the active line and the default name were deleted."
KML_DRAFT_SUFFIX = " (in progress)"


# ---------------------------------------------------------------------------
# Geotags
# ---------------------------------------------------------------------------

GEOTAGS_INTRO = (
    "📷 Geotags mode\n\n"
    "Standard: send a photo, then send the location to stamp on it.\n\n"
    "• /alwaystag - toggle a sticky location used for every following photo\n"
    "• /set_time YYYY-MM-DD HH:MM - use a fixed time instead of now\n"
    "• /set_time reset - go back to the current time\n\n"
    "/menu leaves this mode."
)
GEOTAG_CAPTION = "📍 {address}\n🧭 {coords}\n🕒 {timestamp}"
GEOTAG_PHOTO_PENDING = "✔️ Photo received. Now send the location for it."
GEOTAG_PHOTO_WAITING_STICKY = "✔️ Photo received. Send the location to use as the sticky AlwaysTag location."
GEOTAG_PHOTO_REPLACED = "✔️ New photo received; the previous one was dropped. Now send the location."
GEOTAG_LOCATION_WITHOUT_PHOTO = "📌 Location received. Send a photo first, or enable /alwaystag."
GEOTAG_STICKY_ON = "📍 AlwaysTag ON. Send the location to use for the next photos. /alwaystag again turns it off."
GEOTAG_STICKY_OFF = "📍 AlwaysTag OFF. Every photo needs its own location again."
GEOTAG_STICKY_SET = "📍 AlwaysTag location set to {coords}. Following photos will use it."
GEOTAG_STICKY_UPDATED = "📍 AlwaysTag location updated to {coords}."
GEOTAG_TIME_USAGE = "Usage: /set_time YYYY-MM-DD HH:MM (e.g. /set_time 2024-01-20 10:30) or /set_time reset"
GEOTAG_TIME_SET = "⏱️ Photos will be stamped with {timestamp}."
GEOTAG_TIME_RESET = "⏱️ Manual time removed; the current time will be used."
GEOTAG_TIME_INVALID = "Invalid date/time \"{value}\". Use YYYY-MM-DD HH:MM, e.g. 2024-01-20 10:30."


# ---------------------------------------------------------------------------
# Archive
# ---------------------------------------------------------------------------

ARCHIVE_INTRO = (
    "📦 Archive mode\n\n"
    "• /zip - pack the files you send into one ZIP\n"
    "• /extract - unpack a ZIP you send\n"
    "• /search - look inside a ZIP and pick files\n"
    "• /send - run /zip or /extract on the queued files\n"
    "• /find <pattern> - search the extracted files (*.jpg, report, ...)\n"
    "• /send_selected - send the files found by /find\n"
    "• /stats - your usage statistics\n\n"
    "/menu leaves this mode."
)
ARCHIVE_PICK_OPERATION = "Choose an operation first: /zip, /extract or /search."
ARCHIVE_ZIP_STARTED = "🗜️ ZIP mode. Send the files to pack, then /send."
ARCHIVE_EXTRACT_STARTED = "📂 Extract mode. Send a ZIP archive, then /send."
ARCHIVE_SEARCH_STARTED = (
    "🔍 Search mode. Send a ZIP archive; it is unpacked right away.\n"
    "Then /find <pattern> and /send_selected. Example: /find *.jpg"
)
ARCHIVE_FILE_QUEUED = "File \"{name}\" received. {count} file(s) queued; /send when you are done."
ARCHIVE_ARCHIVE_QUEUED = "Archive \"{name}\" received. /send to extract it."
ARCHIVE_SEARCH_READY = "Archive \"{name}\" unpacked: {count} file(s). Use /find <pattern>."
ARCHIVE_NOTHING_QUEUED = "You have not sent any files yet."
ARCHIVE_SEARCH_USES_FIND = "Search mode unpacks automatically. Use /find <pattern>, then /send_selected."
ARCHIVE_ZIP_DONE = "✅ ZIP with {count} file(s) attached."
ARCHIVE_EXTRACT_DONE = "✅ {count} file(s) extracted."
ARCHIVE_FIND_USAGE = "Usage: /find <pattern>, e.g. /find *.jpg or /find report"
ARCHIVE_FIND_NEEDS_ARCHIVE = "Use /search and send an archive first."
ARCHIVE_FIND_NONE = "❌ No files match \"{pattern}\"."
ARCHIVE_FIND_RESULTS = "✅ {count} file(s) match \"{pattern}\":\n\n{listing}\n\n💡 /send_selected sends them."
ARCHIVE_NOTHING_SELECTED = "Nothing selected. Use /search, send an archive, then /find <pattern>."
ARCHIVE_SELECTED_SENT = "📤 {count} selected file(s) attached."
ARCHIVE_STATS = (
    "📊 Archive usage\n\n"
    "🗜 ZIPs created: {zips}\n"
    "📂 Extractions: {extracts}\n"
    "🔍 Searches: {searches}\n"
    "📤 Files sent to the bot: {received}\n"
    "📥 Files sent by the bot: {sent}"
)


# ---------------------------------------------------------------------------
# Workbook
# ---------------------------------------------------------------------------

WORKBOOK_INTRO = (
    "📚 Workbook mode\n\n"
    "• type a sheet name (e.g. sheet1) to create or switch to that sheet\n"
    "• send photos to store them in the active sheet\n"
    "• send - get every sheet as one archive\n"
    "• list - show the sheets\n"
    "• clear - delete all sheets\n\n"
    "/menu leaves this mode."
)
WORKBOOK_SHEET_CREATED = "Sheet \"{name}\" is active. Send photos now."
WORKBOOK_SHEET_SWITCHED = "Switched to sheet \"{name}\" ({count} photo(s))."
WORKBOOK_NEED_SHEET = "Type a sheet name (e.g. sheet1) before sending photos."
WORKBOOK_PHOTO_ADDED = "📸 Photo {count} added to \"{name}\"."
WORKBOOK_BAD_SHEET_NAME = "Sheet names may use letters, digits, spaces, '-' and '_' (up to 31 characters)."
WORKBOOK_EMPTY = "No sheets yet."
WORKBOOK_LISTING = "Sheets:\n{listing}"
WORKBOOK_CLEARED = "All sheets were deleted."
WORKBOOK_SENT = "✅ {sheets} sheet(s) with {photos} photo(s) attached."


# ---------------------------------------------------------------------------
# OCR
# ---------------------------------------------------------------------------

OCR_INTRO = (
    "📝 OCR mode\n\n"
    "Send a photo or an image file and the text in it is sent back.\n"
    "• /clear_ocr - reset the counter\n\n"
    "/menu leaves this mode."
)
OCR_BUSY = "Still reading the previous image, please wait..."
OCR_NO_TEXT = "No text was found in the image."
OCR_RESULT = "📝 Text found:\n\n{text}"
OCR_NOT_IMAGE = "Please send a photo or an image file."
OCR_CLEARED = "OCR counter reset ({count} image(s) processed before)."
