from datetime import datetime

import colorama

import config

colorama.init(autoreset=True)

STATUS_COLORS = {
    "INFO": colorama.Fore.CYAN,
    "WARNING": colorama.Fore.YELLOW,
    "ERROR": colorama.Fore.RED,
    "SUCCESS": colorama.Fore.GREEN,
    "DEFAULT": colorama.Fore.WHITE,
}


def log(message, status="DEFAULT"):
    try:
        current_time = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        status = status.upper()
        color = STATUS_COLORS.get(status, colorama.Fore.MAGENTA)
        status_label = status if status in STATUS_COLORS else "NO STATUS"
        log_entry = f"[{current_time} - {status_label}] {message}"
        print(color + log_entry)
        with open(config.LOG_FILE, "a", encoding="utf-8") as f:
            f.write(log_entry + "\n")
    except OSError as e:
        error_time = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        print(colorama.Fore.RED + f"[{error_time} - ERROR] Failed to write log file: {e}")
