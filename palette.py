# palette.py

import csv
import logging
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from errors import EncodeError


def swatch_rgb(channels):
    """RGB tuple used to draw a centroid of 1 to 4 channels. Alpha is ignored."""
    channels = tuple(int(c) for c in channels)
    if len(channels) <= 2:
        return (channels[0],) * 3
    return channels[:3]


def hex_value(channels):
    return '#' + ''.join('{:02X}'.format(c) for c in channels)


def create_color_palette(color_percentages, image_path, csv_path=None):
    """
    Creates a color palette image with percentage bars and saves color information to a CSV file.

    Args:
        color_percentages (list of dict): Output of color_reduction.color_percentages.
        image_path (str or Path): PNG file for the palette image.
        csv_path (str or Path): CSV file; defaults to image_path with a .csv suffix.
    """
    image_path = Path(image_path)
    csv_path = Path(csv_path) if csv_path is not None else image_path.with_suffix('.csv')

    # Configuration
    palette_width = 900
    color_block_size = 50
    spacing = 20
    bar_max_width = 400
    bar_height = 30
    text_spacing = 5
    percentage_offset = 10  # Pixels between bar end and percentage label
    bar_x0 = spacing + color_block_size + spacing + 300

    num_colors = len(color_percentages)
    palette_height = num_colors * (color_block_size + spacing) + spacing

    palette_image = Image.new('RGB', (palette_width, palette_height), 'white')
    draw = ImageDraw.Draw(palette_image)
    font = ImageFont.load_default()

    try:
        with open(csv_path, 'w', newline='') as csvfile:
            fieldnames = ['Color Number', 'Channels', 'Hex', 'Count', 'Percentage']
            writer = csv.DictWriter(csvfile, fieldnames=fieldnames)
            writer.writeheader()

            for i, cp in enumerate(color_percentages):
                channels = tuple(cp['color_rgb'])
                rgb = swatch_rgb(channels)
                percentage = cp['percentage']
                hex_text = hex_value(channels)

                writer.writerow({
                    'Color Number': i + 1,
                    'Channels': ' '.join(str(c) for c in channels),
                    'Hex': hex_text,
                    'Count': cp['count'],
                    'Percentage': f"{percentage:.2f}%",
                })

                y0 = spacing + i * (color_block_size + spacing)
                draw.rectangle([(spacing, y0), (spacing + color_block_size, y0 + color_block_size)],
                               fill=rgb, outline='black')

                text_x = spacing + color_block_size + spacing
                draw.text((text_x, y0 + text_spacing), f'#{i + 1}', fill='black', font=font)
                draw.text((text_x, y0 + text_spacing + 20), f'Value: {channels}', fill='black', font=font)
                draw.text((text_x, y0 + text_spacing + 40), f'Hex: {hex_text}', fill='black', font=font)

                bar_y0 = y0 + (color_block_size - bar_height) // 2
                bar_x1 = bar_x0 + (percentage / 100) * bar_max_width
                if percentage > 0:
                    draw.rectangle([(bar_x0, bar_y0), (bar_x1, bar_y0 + bar_height)], fill=rgb)
                draw.rectangle([(bar_x0, bar_y0), (bar_x0 + bar_max_width, bar_y0 + bar_height)],
                               outline='black', width=2)

                percentage_text = f"{percentage:.2f}%"
                bbox = draw.textbbox((0, 0), percentage_text, font=font)
                text_height = bbox[3] - bbox[1]
                draw.text((bar_x0 + bar_max_width + percentage_offset, bar_y0 + (bar_height - text_height) // 2),
                          percentage_text, fill='black', font=font)

        palette_image.save(image_path, format='PNG')
    except (OSError, ValueError) as err:
        for written in (csv_path, image_path):
            if written.exists():
                written.unlink()
        raise EncodeError(f"Could not write color palette {image_path}: {err}") from err

    logging.info(f"Color palette saved as {image_path} and color information saved to {csv_path}")
